from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ...models.credit import CreditSourceType


class CreditBreakdown(BaseModel):
    subscription: int = 0
    purchase: int = 0
    referral: int = 0


class CreditBalance(BaseModel):
    is_unlimited: bool = False
    total_credits: int = 0
    available_credits: int = 0
    used_credits: int = 0
    breakdown: CreditBreakdown = Field(default_factory=CreditBreakdown)
    plan_name: Optional[str] = None


class UseCreditResult(BaseModel):
    # None when the user is on an unlimited plan and no record was claimed.
    credit_id: Optional[int] = None
    source_type: CreditSourceType
    remaining_credits: int
    is_unlimited: bool = False


class BillingHistoryEntry(BaseModel):
    type: Literal["generation", "grant"]
    timestamp: datetime
    credits_delta: int
    source_type: CreditSourceType
    description: str
    credit_id: int


class GrantResult(BaseModel):
    user_id: int
    granted: int
    removed: int = 0
    credit_ids: List[int] = Field(default_factory=list)

from .user import User
from .organization import Organization
from .credit import CreditSourceType, CreditStatus, SOURCE_PRIORITY, UserCredit
from .subscription import Subscription, SubscriptionStatus
from .usage_tracking import UsageTracking
from .pay_per_use_charge import PayPerUseCharge
from .referral_reward import ReferralReward
from .processed_webhook_event import ProcessedWebhookEvent

__all__ = [
    "User",
    "Organization",
    "CreditSourceType",
    "CreditStatus",
    "SOURCE_PRIORITY",
    "UserCredit",
    "Subscription",
    "SubscriptionStatus",
    "UsageTracking",
    "PayPerUseCharge",
    "ReferralReward",
    "ProcessedWebhookEvent",
]

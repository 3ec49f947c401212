import enum

from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..platform.database import Base
from ..shared.utils import utcnow


class CreditSourceType(str, enum.Enum):
    SUBSCRIPTION = "subscription"
    PURCHASE = "purchase"
    REFERRAL = "referral"


class CreditStatus(str, enum.Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


# Higher priority is consumed first.
SOURCE_PRIORITY = {
    CreditSourceType.PURCHASE: 100,
    CreditSourceType.REFERRAL: 75,
    CreditSourceType.SUBSCRIPTION: 50,
}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class IllegalCreditTransition(ValueError):
    pass


class UserCredit(Base):
    """One indivisible unit of generation entitlement."""

    __tablename__ = "user_credits"
    __table_args__ = (
        Index("ix_user_credits_user_status", "user_id", "status"),
        Index("ix_user_credits_claim_order", "user_id", "priority", "created_at"),
        Index("ix_user_credits_source", "source_type", "source_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    source_type = Column(
        Enum(CreditSourceType, name="credit_source_type", values_callable=_enum_values),
        nullable=False,
    )
    source_id = Column(String, nullable=True)
    source_description = Column(Text, nullable=True)
    value_usd = Column(Float, nullable=True)
    status = Column(
        Enum(CreditStatus, name="credit_status", values_callable=_enum_values),
        nullable=False,
        default=CreditStatus.ACTIVE,
    )
    priority = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_for_type = Column(String, nullable=True)
    used_for_id = Column(String, nullable=True)
    expiration_warning_sent_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")

    @classmethod
    def for_source(cls, source_type: CreditSourceType, **fields) -> "UserCredit":
        """Build an active credit carrying the fixed priority of its source."""
        return cls(
            source_type=source_type,
            priority=SOURCE_PRIORITY[source_type],
            status=CreditStatus.ACTIVE,
            **fields,
        )

    def _leave_active(self, target: CreditStatus) -> None:
        if self.status != CreditStatus.ACTIVE:
            raise IllegalCreditTransition(
                f"credit {self.id} is {self.status.value}; cannot become {target.value}"
            )
        self.status = target

    def mark_used(self, feature_type: str, feature_id: str | None, at) -> None:
        self._leave_active(CreditStatus.USED)
        self.used_at = at
        self.used_for_type = feature_type
        self.used_for_id = feature_id

    def mark_expired(self) -> None:
        self._leave_active(CreditStatus.EXPIRED)

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, text
from sqlalchemy.sql import func

from ..platform.database import Base

REFERRED_ROLE = "referred"


class ReferralReward(Base):
    __tablename__ = "referral_rewards"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # The other side of the referral: referred user for the referrer's row and vice versa.
    counterpart_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    # "referrer" or "referred"; a user is rewarded as the referred side at most once.
    role = Column(String, nullable=False, default="referrer")
    reward_type = Column(String, nullable=False, default="free_generation")
    reward_value = Column(Float, nullable=False)
    granted_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index(
            "uq_referral_rewards_referred_user",
            "user_id",
            unique=True,
            postgresql_where=text("role = 'referred'"),
            sqlite_where=text("role = 'referred'"),
        ),
    )

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from ..platform.database import Base


class UsageTracking(Base):
    """Per user, feature and billing period usage counter for quota displays."""

    __tablename__ = "user_usage_tracking"
    __table_args__ = (
        UniqueConstraint("user_id", "feature_type", "period_start", name="uq_usage_user_feature_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_type = Column(String, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)
    bonus_usage_count = Column(Integer, nullable=False, default=0)
    bonus_source = Column(String, nullable=True)
    limit_count = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

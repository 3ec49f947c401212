from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.sql import func

from ..platform.database import Base


class PayPerUseCharge(Base):
    __tablename__ = "pay_per_use_charges"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_type = Column(String, nullable=False, default="blog_post")
    unit_price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    total_amount = Column(Float, nullable=False)
    external_ref = Column(String, nullable=True, index=True)
    charged_at = Column(DateTime(timezone=True), server_default=func.now())

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from heatcare.db.base import Base
from heatcare.utils.helpers import get_utc_now

class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    # E.164, Kosovo (+383) or Albania (+355); verified at registration
    phone = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)

    heatmeters = relationship(
        "HeatmeterClaim",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="HeatmeterClaim.id",
    )

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Enum, UniqueConstraint
from sqlalchemy.orm import relationship

from heatcare.db.base import Base
from heatcare.utils.helpers import get_utc_now

class VerificationMethod(enum.Enum):
    OTP = "otp"
    INVOICE = "invoice"

class HeatmeterClaim(Base):
    """A heatmeter a user says is theirs; one row per (user, heatmeter)."""

    __tablename__ = "user_heatmeters"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    heatmeter_id = Column(String(100), nullable=False)
    is_owner = Column(Boolean, nullable=False, default=True)  # self-declared
    is_primary = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    verification_method = Column(Enum(VerificationMethod, name="verification_method"), nullable=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_utc_now, onupdate=get_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "heatmeter_id", name="uq_user_heatmeter"),
    )

    user = relationship("User", back_populates="heatmeters")

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

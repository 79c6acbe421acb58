import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON, Enum, Index, and_

from heatcare.db.base import Base
from heatcare.utils.helpers import get_utc_now

class VerificationType(enum.Enum):
    OTP = "otp"
    INVOICE = "invoice"
    EMAIL = "email"

class VerificationAttempt(Base):
    """One issued verification challenge, kept forever as an audit trail."""

    __tablename__ = "verifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    heatmeter_id = Column(String(100), nullable=False)
    type = Column(Enum(VerificationType, name="verification_type"), nullable=False)
    # OTP code, or a random reference token for invoice/email
    token = Column(String(255), nullable=True)
    file_path = Column(Text, nullable=True)  # invoice uploads only
    ocr_data = Column(JSON, nullable=True)  # what OCR read off the invoice, for reviewers
    expires_at = Column(DateTime, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)

    __table_args__ = (
        Index("idx_verification_token", "token", "expires_at"),
        Index("idx_verification_user_heatmeter", "user_id", "heatmeter_id", "type"),
    )

    @classmethod
    def active_clause(cls, now: datetime, max_attempts: int):
        """SQL condition for records still eligible for a verify call."""
        return and_(
            cls.verified_at.is_(None),
            cls.expires_at > now,
            cls.attempts < max_attempts,
        )

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def has_exceeded_attempts(self, max_attempts: int) -> bool:
        return self.attempts >= max_attempts

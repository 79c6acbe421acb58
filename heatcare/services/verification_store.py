"""Persistence of verification attempts (OTP codes and invoice uploads).

Attempts are never deleted. Superseded OTP records are invalidated by
forcing ``expires_at`` to the current time, so at most one OTP record per
(user, heatmeter) is ever active.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from heatcare.core.config.settings import get_settings
from heatcare.models.verification import VerificationAttempt, VerificationType
from heatcare.utils.helpers import get_utc_now
from heatcare.utils.otp import generate_otp_code, generate_reference_token

logger = logging.getLogger(__name__)


class VerificationStore:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = get_utc_now,
        max_attempts: Optional[int] = None,
        otp_expiry_minutes: Optional[int] = None,
        invoice_expiry_days: Optional[int] = None,
    ):
        settings = get_settings()
        self.db = db
        self.clock = clock
        self.max_attempts = max_attempts or settings.OTP_MAX_ATTEMPTS
        self.otp_expiry_minutes = otp_expiry_minutes or settings.OTP_EXPIRY_MINUTES
        self.invoice_expiry_days = invoice_expiry_days or settings.INVOICE_VERIFICATION_EXPIRY_DAYS

    def _scoped(self, user_id: int, heatmeter_id: str, type_: VerificationType):
        return self.db.query(VerificationAttempt).filter(
            VerificationAttempt.user_id == user_id,
            VerificationAttempt.heatmeter_id == heatmeter_id,
            VerificationAttempt.type == type_,
        )

    def _newest_first(self, query):
        return query.order_by(VerificationAttempt.created_at.desc(), VerificationAttempt.id.desc())

    def find_active(self, user_id: int, heatmeter_id: str,
                    type_: VerificationType = VerificationType.OTP) -> Optional[VerificationAttempt]:
        """Newest record still eligible for a verify call, if any."""
        query = self._scoped(user_id, heatmeter_id, type_).filter(
            VerificationAttempt.active_clause(self.clock(), self.max_attempts)
        )
        return self._newest_first(query).first()

    def find_latest(self, user_id: int, heatmeter_id: str,
                    type_: VerificationType = VerificationType.OTP) -> Optional[VerificationAttempt]:
        """Newest record regardless of state."""
        return self._newest_first(self._scoped(user_id, heatmeter_id, type_)).first()

    def expire_active_otps(self, user_id: int, heatmeter_id: str) -> int:
        """Force-expire every active OTP record; returns how many were touched.

        The active rows are locked first so a concurrent issue for the same
        heatmeter waits until this transaction commits.
        """
        now = self.clock()
        active = (
            self._scoped(user_id, heatmeter_id, VerificationType.OTP)
            .filter(VerificationAttempt.active_clause(now, self.max_attempts))
            .with_for_update()
            .all()
        )
        for attempt in active:
            attempt.expires_at = now
        return len(active)

    def create_otp(self, user_id: int, heatmeter_id: str,
                   code_generator: Callable[[], str] = generate_otp_code) -> VerificationAttempt:
        now = self.clock()
        attempt = VerificationAttempt(
            user_id=user_id,
            heatmeter_id=heatmeter_id,
            type=VerificationType.OTP,
            token=code_generator(),
            expires_at=now + timedelta(minutes=self.otp_expiry_minutes),
            attempts=0,
            created_at=now,
        )
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def create_invoice(self, user_id: int, heatmeter_id: str, file_path: str) -> VerificationAttempt:
        now = self.clock()
        attempt = VerificationAttempt(
            user_id=user_id,
            heatmeter_id=heatmeter_id,
            type=VerificationType.INVOICE,
            token=generate_reference_token(32),
            file_path=file_path,
            expires_at=now + timedelta(days=self.invoice_expiry_days),
            attempts=0,
            created_at=now,
        )
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def increment_attempts(self, attempt: VerificationAttempt) -> bool:
        """Count one verify call against ``attempt``.

        Done as a single conditional UPDATE so concurrent guesses cannot push
        the counter past the cap. Returns False when the record stopped being
        active before the increment landed.
        """
        updated = (
            self.db.query(VerificationAttempt)
            .filter(
                VerificationAttempt.id == attempt.id,
                VerificationAttempt.active_clause(self.clock(), self.max_attempts),
            )
            .update(
                {VerificationAttempt.attempts: VerificationAttempt.attempts + 1},
                synchronize_session=False,
            )
        )
        self.db.refresh(attempt)
        return updated == 1

    def mark_verified(self, attempt: VerificationAttempt) -> bool:
        """Stamp ``verified_at`` unless already set; True when this call set it."""
        updated = (
            self.db.query(VerificationAttempt)
            .filter(
                VerificationAttempt.id == attempt.id,
                VerificationAttempt.verified_at.is_(None),
            )
            .update({VerificationAttempt.verified_at: self.clock()}, synchronize_session=False)
        )
        self.db.refresh(attempt)
        return updated == 1

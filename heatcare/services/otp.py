"""OTP challenge engine for heatmeter ownership.

Per (user, heatmeter) a challenge moves ``no_challenge -> sent`` and from
there to ``verified``, ``expired`` or ``exhausted``. The last two are final
for that record; a fresh ``send`` starts over with a new record.
"""
import enum
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from heatcare.core.config.settings import get_settings
from heatcare.core.exceptions import DeliveryFailed, RateLimited
from heatcare.models.heatmeter import VerificationMethod
from heatcare.models.verification import VerificationAttempt, VerificationType
from heatcare.services.registry import HeatmeterRegistry
from heatcare.services.sms import SMSTransport
from heatcare.services.verification_store import VerificationStore
from heatcare.utils.helpers import get_utc_now
from heatcare.utils.otp import create_otp_message, generate_otp_code

logger = logging.getLogger(__name__)


class OTPState(enum.Enum):
    NO_CHALLENGE = "no_challenge"
    SENT = "sent"
    VERIFIED = "verified"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class OTPChallengeEngine:
    def __init__(
        self,
        db: Session,
        sms: SMSTransport,
        registry: Optional[HeatmeterRegistry] = None,
        store: Optional[VerificationStore] = None,
        clock: Callable[[], datetime] = get_utc_now,
        code_generator: Callable[[], str] = generate_otp_code,
        resend_cooldown_seconds: Optional[int] = None,
    ):
        self.db = db
        self.sms = sms
        self.clock = clock
        self.registry = registry or HeatmeterRegistry(db, clock=clock)
        self.store = store or VerificationStore(db, clock=clock)
        self.code_generator = code_generator
        self.resend_cooldown_seconds = (
            resend_cooldown_seconds
            if resend_cooldown_seconds is not None
            else get_settings().OTP_RESEND_COOLDOWN_SECONDS
        )

    @property
    def expiry_minutes(self) -> int:
        return self.store.otp_expiry_minutes

    @property
    def max_attempts(self) -> int:
        return self.store.max_attempts

    def send(self, user_id: int, heatmeter_id: str, phone: str) -> VerificationAttempt:
        """Issue a new code and text it to ``phone``.

        The caller guarantees ``phone`` is the user's verified number. The new
        record is committed before delivery, so it survives a DeliveryFailed.
        """
        try:
            # Serialises concurrent sends for this heatmeter, even when no code is active yet
            self.registry.lock(user_id, heatmeter_id)
            self.store.expire_active_otps(user_id, heatmeter_id)
            attempt = self.store.create_otp(user_id, heatmeter_id, self.code_generator)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(attempt)

        message = create_otp_message(attempt.token, self.expiry_minutes)
        try:
            delivered = self.sms.send(phone, message)
        except Exception as e:
            # SMSDeliveryError from well behaved transports, anything else from broken ones
            logger.exception("Failed to send OTP", extra={
                "user_id": user_id, "heatmeter_id": heatmeter_id, "error": str(e),
            })
            raise DeliveryFailed() from e
        if not delivered:
            logger.error("SMS transport refused OTP", extra={
                "user_id": user_id, "heatmeter_id": heatmeter_id,
            })
            raise DeliveryFailed()

        logger.info("OTP sent successfully", extra={
            "user_id": user_id, "heatmeter_id": heatmeter_id, "verification_id": attempt.id,
        })
        return attempt

    def resend(self, user_id: int, heatmeter_id: str, phone: str) -> VerificationAttempt:
        last = self.store.find_latest(user_id, heatmeter_id, VerificationType.OTP)
        if last is not None:
            available_at = last.created_at + timedelta(seconds=self.resend_cooldown_seconds)
            now = self.clock()
            if available_at > now:
                retry_after = max(1, math.ceil((available_at - now).total_seconds()))
                raise RateLimited(retry_after)
        return self.send(user_id, heatmeter_id, phone)

    def verify(self, user_id: int, heatmeter_id: str, code: str) -> bool:
        """Check ``code`` against the active challenge.

        False covers both "wrong code" and "no active challenge"; use
        challenge_state() to tell them apart.
        """
        attempt = self.store.find_active(user_id, heatmeter_id, VerificationType.OTP)
        if attempt is None:
            return False

        # Counted before comparing, a correct code uses up an attempt too
        if not self.store.increment_attempts(attempt):
            self.db.commit()
            return False

        if attempt.token != code:
            self.db.commit()
            logger.warning("Invalid OTP attempt", extra={
                "user_id": user_id, "heatmeter_id": heatmeter_id, "attempts": attempt.attempts,
            })
            return False

        self.store.mark_verified(attempt)
        claim = self.registry.find(user_id, heatmeter_id)
        if claim is not None:
            self.registry.mark_verified(claim.id, VerificationMethod.OTP)
        else:
            self.db.commit()
            logger.warning("OTP verified for a heatmeter no longer claimed", extra={
                "user_id": user_id, "heatmeter_id": heatmeter_id,
            })
        logger.info("OTP verified successfully", extra={
            "user_id": user_id, "heatmeter_id": heatmeter_id,
        })
        return True

    def challenge_state(self, user_id: int, heatmeter_id: str) -> OTPState:
        attempt = self.store.find_latest(user_id, heatmeter_id, VerificationType.OTP)
        if attempt is None:
            return OTPState.NO_CHALLENGE
        if attempt.is_verified:
            return OTPState.VERIFIED
        if attempt.has_exceeded_attempts(self.max_attempts):
            return OTPState.EXHAUSTED
        if attempt.is_expired(self.clock()):
            return OTPState.EXPIRED
        return OTPState.SENT

    def remaining_attempts(self, user_id: int, heatmeter_id: str) -> int:
        attempt = self.store.find_active(user_id, heatmeter_id, VerificationType.OTP)
        if attempt is None:
            return 0
        return self.max_attempts - attempt.attempts

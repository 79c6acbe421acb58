import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from heatcare.core.exceptions import NotFound, NotVerified, PrimaryClaimProtected
from heatcare.models.heatmeter import HeatmeterClaim, VerificationMethod
from heatcare.models.user import User
from heatcare.utils.helpers import get_utc_now

logger = logging.getLogger(__name__)


class ClaimOutcome(enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class ClaimResult:
    outcome: ClaimOutcome
    claim: HeatmeterClaim

    @property
    def created(self) -> bool:
        return self.outcome is ClaimOutcome.CREATED


class HeatmeterRegistry:
    """Per-user collection of claimed heatmeters."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = get_utc_now):
        self.db = db
        self.clock = clock

    def _for_user(self, user_id: int):
        return self.db.query(HeatmeterClaim).filter(HeatmeterClaim.user_id == user_id)

    def _find_query(self, user_id: int, heatmeter_id: str):
        return self._for_user(user_id).filter(HeatmeterClaim.heatmeter_id == heatmeter_id)

    def find(self, user_id: int, heatmeter_id: str) -> Optional[HeatmeterClaim]:
        return self._find_query(user_id, heatmeter_id).first()

    def get(self, user_id: int, claim_id: int) -> HeatmeterClaim:
        claim = self._for_user(user_id).filter(HeatmeterClaim.id == claim_id).first()
        if not claim:
            raise NotFound()
        return claim

    def lock(self, user_id: int, heatmeter_id: str) -> None:
        """Row-lock the claim for the rest of the transaction.

        Falls back to the user row when the heatmeter is not claimed, so there
        is always something to wait on.
        """
        claim = self._find_query(user_id, heatmeter_id).with_for_update().first()
        if claim is None:
            self.db.query(User).filter(User.id == user_id).with_for_update().first()

    def list(self, user_id: int) -> List[HeatmeterClaim]:
        return self._for_user(user_id).order_by(HeatmeterClaim.id).all()

    def claim(self, user_id: int, heatmeter_id: str, is_owner: bool = True) -> ClaimResult:
        """Register ``heatmeter_id`` for the user, or hand back the existing claim.

        The first claim a user makes is primary even though it is unverified.
        """
        existing = self.find(user_id, heatmeter_id)
        if existing:
            return ClaimResult(ClaimOutcome.ALREADY_EXISTS, existing)

        has_claims = self.db.query(self._for_user(user_id).exists()).scalar()
        now = self.clock()
        claim = HeatmeterClaim(
            user_id=user_id,
            heatmeter_id=heatmeter_id,
            is_owner=is_owner,
            is_primary=not has_claims,
            created_at=now,
            updated_at=now,
        )
        self.db.add(claim)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent request inserted the same pair first
            self.db.rollback()
            existing = self.find(user_id, heatmeter_id)
            if existing is None:
                raise
            return ClaimResult(ClaimOutcome.ALREADY_EXISTS, existing)
        self.db.refresh(claim)
        logger.info("Heatmeter claimed", extra={
            "user_id": user_id, "heatmeter_id": heatmeter_id, "is_primary": claim.is_primary,
        })
        return ClaimResult(ClaimOutcome.CREATED, claim)

    def set_primary(self, user_id: int, claim_id: int) -> HeatmeterClaim:
        claim = self.get(user_id, claim_id)
        if not claim.is_verified:
            raise NotVerified()

        # Lock the user's claims, then flip every flag in one statement
        self._for_user(user_id).with_for_update().all()
        self._for_user(user_id).update(
            {HeatmeterClaim.is_primary: case((HeatmeterClaim.id == claim.id, True), else_=False)},
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(claim)
        logger.info("Primary heatmeter changed", extra={
            "user_id": user_id, "heatmeter_id": claim.heatmeter_id,
        })
        return claim

    def remove(self, user_id: int, claim_id: int) -> None:
        claim = self.get(user_id, claim_id)
        if claim.is_primary and self._for_user(user_id).count() > 1:
            raise PrimaryClaimProtected()

        self.db.delete(claim)
        self.db.commit()
        logger.info("Heatmeter removed", extra={
            "user_id": user_id, "heatmeter_id": claim.heatmeter_id,
        })

    def mark_verified(self, claim_id: int, method: VerificationMethod) -> None:
        """Flag the claim verified by ``method``; a no-op when already verified.

        Commits, together with whatever the calling engine staged in the
        same session.
        """
        claim = self.db.query(HeatmeterClaim).filter(HeatmeterClaim.id == claim_id).first()
        if claim is None:
            raise NotFound()
        if not claim.is_verified:
            claim.verified_at = self.clock()
            claim.verification_method = method
        self.db.commit()

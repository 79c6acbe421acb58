import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from heatcare.core.exceptions import InvalidUpload, UploadFailed
from heatcare.models.heatmeter import VerificationMethod
from heatcare.models.verification import VerificationAttempt
from heatcare.services.file_storage import FileStorage
from heatcare.services.ocr import InvoiceOCR, OCRResult
from heatcare.services.registry import HeatmeterRegistry
from heatcare.services.verification_store import VerificationStore
from heatcare.utils.helpers import get_utc_now

logger = logging.getLogger(__name__)


class InvoiceOutcome(enum.Enum):
    AUTO_VERIFIED = "auto_verified"
    PENDING_MANUAL_REVIEW = "pending_review"


@dataclass(frozen=True)
class InvoiceUploadResult:
    outcome: InvoiceOutcome
    attempt: VerificationAttempt
    ocr: Optional[OCRResult] = None


class InvoiceVerificationEngine:
    """Verifies ownership from an uploaded invoice.

    The invoice is auto-accepted only when OCR reads exactly the claimed
    heatmeter id off it. Anything else, OCR failures included, leaves the
    attempt waiting for a human reviewer.
    """

    def __init__(
        self,
        db: Session,
        storage: FileStorage,
        ocr: InvoiceOCR,
        registry: Optional[HeatmeterRegistry] = None,
        store: Optional[VerificationStore] = None,
        clock: Callable[[], datetime] = get_utc_now,
    ):
        self.db = db
        self.storage = storage
        self.ocr = ocr
        self.clock = clock
        self.registry = registry or HeatmeterRegistry(db, clock=clock)
        self.store = store or VerificationStore(db, clock=clock)

    def _store_file(self, user_id: int, content: bytes, filename: str, mime_type: Optional[str]) -> str:
        error = self.storage.validate(content, filename, mime_type)
        if error:
            raise InvalidUpload(error)
        success, result = self.storage.save_bytes(
            content, filename, mime_type, subfolder=f"verifications/{user_id}"
        )
        if not success:
            raise UploadFailed()
        return result

    def upload(self, user_id: int, heatmeter_id: str, content: bytes,
               filename: str, mime_type: Optional[str] = None) -> InvoiceUploadResult:
        file_path = self._store_file(user_id, content, filename, mime_type)
        try:
            attempt = self.store.create_invoice(user_id, heatmeter_id, file_path)
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.storage.delete_file(file_path)
            raise
        self.db.refresh(attempt)

        try:
            ocr_result = self.ocr.extract(self.storage.full_path(file_path))
        except Exception as e:
            # OCR is best effort, never surface its failures to the user
            logger.exception("OCR processing failed", extra={
                "user_id": user_id, "heatmeter_id": heatmeter_id,
                "verification_id": attempt.id, "error": str(e),
            })
            return self._queue_for_review(attempt, None)

        attempt.ocr_data = ocr_result.to_dict()
        self.db.flush()
        if ocr_result.heatmeter_id is None or ocr_result.heatmeter_id != heatmeter_id:
            return self._queue_for_review(attempt, ocr_result)

        self.store.mark_verified(attempt)
        claim = self.registry.find(user_id, heatmeter_id)
        if claim is not None:
            self.registry.mark_verified(claim.id, VerificationMethod.INVOICE)
        else:
            self.db.commit()
        logger.info("Invoice auto-verified via OCR", extra={
            "user_id": user_id, "heatmeter_id": heatmeter_id, "verification_id": attempt.id,
        })
        return InvoiceUploadResult(InvoiceOutcome.AUTO_VERIFIED, attempt, ocr_result)

    def _queue_for_review(self, attempt: VerificationAttempt, ocr_result: Optional[OCRResult]) -> InvoiceUploadResult:
        self.db.commit()
        logger.info("Invoice queued for manual review", extra={
            "user_id": attempt.user_id,
            "heatmeter_id": attempt.heatmeter_id,
            "verification_id": attempt.id,
            "ocr_heatmeter_id": ocr_result.heatmeter_id if ocr_result else None,
        })
        return InvoiceUploadResult(InvoiceOutcome.PENDING_MANUAL_REVIEW, attempt, ocr_result)

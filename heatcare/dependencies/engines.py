from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from heatcare.db.session import get_db
from heatcare.services.file_storage import FileStorage
from heatcare.services.invoice import InvoiceVerificationEngine
from heatcare.services.ocr import InvoiceOCR, get_invoice_ocr
from heatcare.services.otp import OTPChallengeEngine
from heatcare.services.registry import HeatmeterRegistry
from heatcare.services.sms import SMSTransport, get_sms_transport

# Collaborators are process-wide; tests swap them through app.dependency_overrides

@lru_cache()
def get_sms() -> SMSTransport:
    return get_sms_transport()

@lru_cache()
def get_ocr() -> InvoiceOCR:
    return get_invoice_ocr()

@lru_cache()
def get_storage() -> FileStorage:
    return FileStorage()

def get_registry(db: Session = Depends(get_db)) -> HeatmeterRegistry:
    return HeatmeterRegistry(db)

def get_otp_engine(
    db: Session = Depends(get_db),
    registry: HeatmeterRegistry = Depends(get_registry),
    sms: SMSTransport = Depends(get_sms),
) -> OTPChallengeEngine:
    return OTPChallengeEngine(db, sms, registry=registry)

def get_invoice_engine(
    db: Session = Depends(get_db),
    registry: HeatmeterRegistry = Depends(get_registry),
    storage: FileStorage = Depends(get_storage),
    ocr: InvoiceOCR = Depends(get_ocr),
) -> InvoiceVerificationEngine:
    return InvoiceVerificationEngine(db, storage, ocr, registry=registry)

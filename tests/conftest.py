import os
import tempfile
from datetime import datetime, timedelta

# Settings are cached on first use, point them at throwaway locations first
_TMP = tempfile.mkdtemp(prefix="heatcare-tests-")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP, "uploads"))
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("SMS_PROVIDER", "log")
os.environ.setdefault("OCR_PROVIDER", "disabled")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from heatcare.core.exceptions import OCRError, SMSDeliveryError
from heatcare.db.base import Base
from heatcare.models.heatmeter import HeatmeterClaim  # noqa: F401
from heatcare.models.user import User
from heatcare.models.verification import VerificationAttempt, VerificationType
from heatcare.services.file_storage import FileStorage
from heatcare.services.invoice import InvoiceVerificationEngine
from heatcare.services.ocr import InvoiceOCR, OCRResult
from heatcare.services.otp import OTPChallengeEngine
from heatcare.services.registry import HeatmeterRegistry
from heatcare.services.sms import SMSTransport
from heatcare.services.verification_store import VerificationStore


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSMS(SMSTransport):
    def __init__(self):
        self.messages = []
        self.fail = False

    def send(self, phone: str, message: str) -> bool:
        if self.fail:
            raise SMSDeliveryError("gateway down")
        self.messages.append((phone, message))
        return True


class ScriptedOCR(InvoiceOCR):
    """Returns whatever the test scripted, and remembers what it was asked to read."""

    def __init__(self):
        self.result = OCRResult(heatmeter_id=None, raw_text="")
        self.error = None
        self.calls = []

    def returns(self, heatmeter_id, raw_text="FATURA / INVOICE"):
        self.result = OCRResult(heatmeter_id=heatmeter_id, raw_text=raw_text)
        self.error = None

    def raises(self, error=None):
        self.error = error or OCRError("tesseract crashed")

    def extract(self, file_path: str) -> OCRResult:
        self.calls.append(file_path)
        if self.error:
            raise self.error
        return self.result


class CodeSequence:
    def __init__(self, *codes):
        self.codes = list(codes)
        self.issued = []

    def __call__(self) -> str:
        code = self.codes[len(self.issued) % len(self.codes)]
        self.issued.append(code)
        return code


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sms():
    return RecordingSMS()


@pytest.fixture
def ocr():
    return ScriptedOCR()


@pytest.fixture
def codes():
    return CodeSequence("482913", "135790", "246801")


@pytest.fixture
def storage(tmp_path):
    return FileStorage(upload_dir=str(tmp_path / "uploads"))


def make_user(db, email="arben@example.com", phone="+38344123456", name="Arben Krasniqi"):
    user = User(name=name, email=email, phone=phone)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def other_user(db):
    return make_user(db, email="drita@example.com", phone="+355691234567", name="Drita Hoxha")


@pytest.fixture
def store(db, clock):
    return VerificationStore(db, clock=clock, max_attempts=3, otp_expiry_minutes=10, invoice_expiry_days=7)


@pytest.fixture
def registry(db, clock):
    return HeatmeterRegistry(db, clock=clock)


@pytest.fixture
def otp_engine(db, sms, registry, store, clock, codes):
    return OTPChallengeEngine(
        db, sms, registry=registry, store=store, clock=clock,
        code_generator=codes, resend_cooldown_seconds=60,
    )


@pytest.fixture
def invoice_engine(db, storage, ocr, registry, store, clock):
    return InvoiceVerificationEngine(db, storage, ocr, registry=registry, store=store, clock=clock)


def otp_records(db, user_id, heatmeter_id):
    return (
        db.query(VerificationAttempt)
        .filter(
            VerificationAttempt.user_id == user_id,
            VerificationAttempt.heatmeter_id == heatmeter_id,
            VerificationAttempt.type == VerificationType.OTP,
        )
        .order_by(VerificationAttempt.id)
        .all()
    )


def active_otp_count(db, clock, user_id, heatmeter_id, max_attempts=3):
    return (
        db.query(VerificationAttempt)
        .filter(
            VerificationAttempt.user_id == user_id,
            VerificationAttempt.heatmeter_id == heatmeter_id,
            VerificationAttempt.type == VerificationType.OTP,
            VerificationAttempt.active_clause(clock(), max_attempts),
        )
        .count()
    )

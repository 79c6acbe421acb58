"""Invoice OCR: backend contract, Tesseract backend and field extraction.

Backends return an OCRResult for any readable document, with ``heatmeter_id``
set to None when nothing matched. OCRError is reserved for documents that
could not be processed at all.
"""
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Optional

import pytesseract
from PIL import Image, UnidentifiedImageError

from heatcare.core.config.settings import Settings, get_settings
from heatcare.core.exceptions import OCRError

logger = logging.getLogger(__name__)

# Tried in order, first match wins
HEATMETER_ID_PATTERNS = [
    re.compile(r'HM\d{6}', re.IGNORECASE),
    re.compile(r'Heat\s*meter\s*ID:\s*(\S+)', re.IGNORECASE),
    re.compile(r'Matës\s*ID:\s*(\S+)', re.IGNORECASE),
    re.compile(r'Customer\s*No[.:]\s*(\S+)', re.IGNORECASE),
    re.compile(r'Konsumator\s*Nr[.:]\s*(\S+)', re.IGNORECASE),
]
INVOICE_NUMBER_PATTERN = re.compile(r'Invoice\s*[#No.:]*\s*(\S+)', re.IGNORECASE)
AMOUNT_PATTERN = re.compile(r'Total[:\s]+€?\s*([\d,.]+)', re.IGNORECASE)
DATE_PATTERN = re.compile(r'Date[:\s]+(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4})', re.IGNORECASE)
CUSTOMER_NAME_PATTERN = re.compile(r'Customer[:\s]+([^\n]+)', re.IGNORECASE)


@dataclass
class OCRResult:
    heatmeter_id: Optional[str]
    raw_text: str
    invoice_number: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[str] = None
    customer_name: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def extract_heatmeter_id(text: str) -> Optional[str]:
    for pattern in HEATMETER_ID_PATTERNS:
        match = pattern.search(text)
        if match:
            value = match.group(1) if match.groups() else match.group(0)
            return value.strip()
    return None


def _parse_amount(value: str) -> Optional[float]:
    try:
        return float(value.replace(',', '').rstrip('.'))
    except ValueError:
        return None


def extract_invoice_fields(text: str) -> OCRResult:
    """Pull the heatmeter id and the other invoice fields out of OCR text."""
    result = OCRResult(heatmeter_id=extract_heatmeter_id(text), raw_text=text)

    match = INVOICE_NUMBER_PATTERN.search(text)
    if match:
        result.invoice_number = match.group(1)

    match = AMOUNT_PATTERN.search(text)
    if match:
        result.amount = _parse_amount(match.group(1))

    match = DATE_PATTERN.search(text)
    if match:
        result.date = match.group(1)

    match = CUSTOMER_NAME_PATTERN.search(text)
    if match:
        result.customer_name = match.group(1).strip()

    return result


class InvoiceOCR(ABC):
    @abstractmethod
    def extract(self, file_path: str) -> OCRResult:
        """Read the stored invoice at ``file_path``."""


class TesseractInvoiceOCR(InvoiceOCR):
    def __init__(self, languages: str = "sqi+eng", timeout: int = 30, tesseract_cmd: Optional[str] = None):
        self.languages = languages
        self.timeout = timeout
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def extract(self, file_path: str) -> OCRResult:
        if not os.path.exists(file_path):
            raise OCRError(f"File not found: {file_path}")
        if file_path.lower().endswith(".pdf"):
            # TODO: rasterise the first page once a PDF renderer is available on the OCR hosts
            raise OCRError("PDF invoices cannot be read by the OCR backend")

        try:
            with Image.open(file_path) as img:
                text = pytesseract.image_to_string(img, lang=self.languages, timeout=self.timeout)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise OCRError(f"OCR processing failed: {e}") from e
        except (UnidentifiedImageError, OSError) as e:
            raise OCRError(f"Could not open invoice image: {e}") from e
        except RuntimeError as e:
            # pytesseract signals its timeout with a bare RuntimeError
            raise OCRError(f"OCR timed out after {self.timeout}s") from e

        result = extract_invoice_fields(text)
        logger.debug("OCR finished", extra={"file_path": file_path, "heatmeter_id": result.heatmeter_id})
        return result


class DisabledOCR(InvoiceOCR):
    """Sends every invoice to manual review."""

    def extract(self, file_path: str) -> OCRResult:
        raise OCRError("OCR is disabled")


def get_invoice_ocr(settings: Optional[Settings] = None) -> InvoiceOCR:
    settings = settings or get_settings()
    if settings.OCR_PROVIDER == "disabled":
        return DisabledOCR()
    return TesseractInvoiceOCR(
        languages=settings.OCR_LANGUAGES,
        timeout=settings.OCR_TIMEOUT_SECONDS,
        tesseract_cmd=settings.TESSERACT_CMD,
    )

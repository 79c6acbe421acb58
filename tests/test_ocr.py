import pytest
import pytesseract
from PIL import Image

from heatcare.core.config.settings import Settings
from heatcare.core.exceptions import OCRError
from heatcare.services import ocr as ocr_module
from heatcare.services.ocr import (
    DisabledOCR, TesseractInvoiceOCR, extract_heatmeter_id, extract_invoice_fields, get_invoice_ocr,
)

SAMPLE_INVOICE = """TERMOKOS SH.A.
Invoice No: 2025-000781
Date: 15/01/2025
Customer: Arben Krasniqi
Heat meter ID: HM123456
Total: €1,234.50
"""


@pytest.mark.parametrize("text,expected", [
    ("ref HM123456 period Jan", "HM123456"),
    ("ref hm123456", "hm123456"),
    ("Heat meter ID: KS-77812", "KS-77812"),
    ("HeatmeterID:KS-77812", "KS-77812"),
    ("Matës ID: PR00912", "PR00912"),
    ("Customer No. 55-1200", "55-1200"),
    ("Konsumator Nr: 55-1201", "55-1201"),
])
def test_heatmeter_id_patterns(text, expected):
    assert extract_heatmeter_id(text) == expected


def test_first_pattern_wins():
    text = "Customer No: 55-1200\nHeat meter ID: KS-1\nmeter HM000042"
    assert extract_heatmeter_id(text) == "HM000042"


def test_no_identifier():
    assert extract_heatmeter_id("Faleminderit per pagesen") is None
    assert extract_heatmeter_id("") is None


def test_extracts_invoice_fields():
    result = extract_invoice_fields(SAMPLE_INVOICE)

    assert result.heatmeter_id == "HM123456"
    assert result.invoice_number == "2025-000781"
    assert result.amount == 1234.50
    assert result.date == "15/01/2025"
    assert result.customer_name == "Arben Krasniqi"
    assert result.raw_text == SAMPLE_INVOICE


def test_unparseable_amount_is_dropped():
    assert extract_invoice_fields("Total: ...").amount is None


def test_to_dict_is_json_ready():
    data = extract_invoice_fields("Heat meter ID: KS-1").to_dict()
    assert data["heatmeter_id"] == "KS-1"
    assert set(data) == {"heatmeter_id", "raw_text", "invoice_number", "amount", "date", "customer_name"}


class TestTesseractBackend:
    @pytest.fixture
    def image_path(self, tmp_path):
        path = tmp_path / "invoice.png"
        Image.new("RGB", (40, 20), "white").save(path)
        return str(path)

    def test_reads_text_with_configured_languages(self, monkeypatch, image_path):
        seen = {}

        def fake_image_to_string(img, lang=None, timeout=0):
            seen.update(lang=lang, timeout=timeout)
            return "Heat meter ID: HM123456"
        monkeypatch.setattr(pytesseract, "image_to_string", fake_image_to_string)

        result = TesseractInvoiceOCR(languages="sqi+eng", timeout=12).extract(image_path)

        assert result.heatmeter_id == "HM123456"
        assert seen == {"lang": "sqi+eng", "timeout": 12}

    def test_unmatched_text_is_a_result_not_an_error(self, monkeypatch, image_path):
        monkeypatch.setattr(pytesseract, "image_to_string", lambda img, lang=None, timeout=0: "blurry")

        result = TesseractInvoiceOCR().extract(image_path)

        assert result.heatmeter_id is None
        assert result.raw_text == "blurry"

    def test_timeout_becomes_ocr_error(self, monkeypatch, image_path):
        def timed_out(img, lang=None, timeout=0):
            raise RuntimeError("Tesseract process timeout")
        monkeypatch.setattr(pytesseract, "image_to_string", timed_out)

        with pytest.raises(OCRError):
            TesseractInvoiceOCR(timeout=1).extract(image_path)

    def test_missing_binary_becomes_ocr_error(self, monkeypatch, image_path):
        def not_installed(img, lang=None, timeout=0):
            raise pytesseract.TesseractNotFoundError()
        monkeypatch.setattr(pytesseract, "image_to_string", not_installed)

        with pytest.raises(OCRError, match="OCR processing failed"):
            TesseractInvoiceOCR().extract(image_path)

    def test_corrupt_image(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not really a png")

        with pytest.raises(OCRError, match="Could not open"):
            TesseractInvoiceOCR().extract(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(OCRError):
            TesseractInvoiceOCR().extract(str(tmp_path / "gone.png"))

    def test_pdf_is_left_for_review(self, tmp_path):
        path = tmp_path / "invoice.pdf"
        path.write_bytes(b"%PDF-1.4")

        with pytest.raises(OCRError):
            TesseractInvoiceOCR().extract(str(path))


def test_disabled_backend_always_fails(tmp_path):
    with pytest.raises(OCRError):
        DisabledOCR().extract(str(tmp_path / "invoice.png"))


def test_backend_selection():
    assert isinstance(get_invoice_ocr(Settings(OCR_PROVIDER="disabled")), DisabledOCR)
    backend = get_invoice_ocr(Settings(OCR_PROVIDER="tesseract", OCR_LANGUAGES="eng", OCR_TIMEOUT_SECONDS=5))
    assert isinstance(backend, ocr_module.TesseractInvoiceOCR)
    assert backend.languages == "eng"
    assert backend.timeout == 5

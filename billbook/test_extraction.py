import base64
import logging
import os

import pytest

from billbook import extraction
from billbook.config import settings
from billbook.conftest import REPLY, FakeVisionModel
from billbook.errors import ExtractionFailed, ParseFailed, ValidationFailed


def test_strip_code_fences_variants():
    assert extraction.strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extraction.strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert extraction.strip_code_fences('  {"a": 1} ') == '{"a": 1}'
    assert extraction.strip_code_fences('Here you go:\n```json\n{"a": 1}\n```\nDone.') == '{"a": 1}'


def test_fenced_reply_parses_and_normalises_nulls():
    data = extraction.parse_model_response(REPLY)
    assert data.bill_number == "INV-9"
    assert data.location == ""
    assert data.total_billed_amount == 1180.0
    assert data.supplier.address.pincode == ""
    assert data.supplier.phone.office == []
    assert data.party.name == ""
    assert data.items[0].hsn == "2523"
    assert data.items[0].quantity == 10.0


def test_non_json_reply_is_parse_failure(caplog):
    with caplog.at_level(logging.ERROR, logger="billbook.extraction"):
        with pytest.raises(ParseFailed):
            extraction.parse_model_response("Sorry, I cannot read this bill.")
    assert "Sorry, I cannot read this bill." in caplog.text


def test_json_array_reply_is_parse_failure():
    with pytest.raises(ParseFailed):
        extraction.parse_model_response("[1, 2, 3]")


def test_extract_bill_data_sends_image_and_timeout(tmp_path):
    image = tmp_path / "bill.png"
    image.write_bytes(b"\x89PNG fake")
    model = FakeVisionModel(reply=REPLY)

    data = extraction.extract_bill_data(str(image), model=model)

    assert data.bill_number == "INV-9"
    parts, options = model.calls[0]
    assert parts[0] == extraction.EXTRACTION_PROMPT
    assert parts[1] == {"mime_type": "image/png", "data": b"\x89PNG fake"}
    assert options == {"timeout": settings.GEMINI_TIMEOUT}


def test_model_error_is_extraction_failure(tmp_path):
    image = tmp_path / "bill.jpg"
    image.write_bytes(b"jpeg")
    with pytest.raises(ExtractionFailed):
        extraction.extract_bill_data(str(image), model=FakeVisionModel(error=TimeoutError("deadline exceeded")))


def test_empty_reply_is_extraction_failure(tmp_path):
    image = tmp_path / "bill.jpg"
    image.write_bytes(b"jpeg")
    with pytest.raises(ExtractionFailed):
        extraction.extract_bill_data(str(image), model=FakeVisionModel(reply="   "))


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "GEMINI_API_KEY", "")
    with pytest.raises(ExtractionFailed):
        extraction.get_vision_model()


def test_temp_file_removed_after_success(upload_dir):
    extraction.extract_from_bytes(b"jpeg", "bill.jpg", model=FakeVisionModel(reply=REPLY))
    assert os.listdir(upload_dir) == []


def test_temp_file_removed_after_failure(upload_dir):
    with pytest.raises(ParseFailed):
        extraction.extract_from_bytes(b"jpeg", "bill.jpg", model=FakeVisionModel(reply="not json"))
    assert os.listdir(upload_dir) == []


def test_decode_image_payload_data_url():
    raw = b"\xff\xd8\xff fake jpeg"
    data, ext = extraction.decode_image_payload("data:image/png;base64," + base64.b64encode(raw).decode())
    assert data == raw
    assert ext == ".png"


def test_decode_image_payload_plain_base64():
    data, ext = extraction.decode_image_payload(base64.b64encode(b"abc").decode())
    assert data == b"abc"
    assert ext is None


def test_decode_image_payload_rejects_garbage():
    with pytest.raises(ValidationFailed) as exc:
        extraction.decode_image_payload("not base64 at all!")
    assert "image" in exc.value.errors


def test_loose_values_become_empty_instead_of_failing():
    reply = """```json
{
  "bill_number": ["INV", "9"],
  "bill_date": "2024-02-01",
  "location": {"city": "Kochi"},
  "total_billed_amount": "Rs. 1,180.00",
  "supplier": "A2Z Buildwares",
  "party": {"name": "Joy Mynatty", "gstin": null, "address": "Kochi", "phone": {"mobile": 9876543210}},
  "items": [
    {"name": "Cement", "hsn": "2523", "quantity": "10 bags", "rate": "100", "amount": "1,000"},
    "Freight extra"
  ]
}
```"""
    data = extraction.parse_model_response(reply)
    assert data.bill_number == ""
    assert data.location == ""
    assert data.total_billed_amount is None
    assert data.supplier.name == ""
    assert data.party.name == "Joy Mynatty"
    assert data.party.address.city == ""
    assert data.party.phone.mobile == ["9876543210"]
    assert len(data.items) == 1
    assert data.items[0].quantity is None
    assert data.items[0].rate == 100.0
    assert data.items[0].amount == 1000.0


def test_extraction_failure_message_hides_details(tmp_path):
    image = tmp_path / "bill.jpg"
    image.write_bytes(b"jpeg")
    with pytest.raises(ExtractionFailed) as exc:
        extraction.extract_bill_data(str(image), model=FakeVisionModel(error=RuntimeError("api key AIza-secret rejected")))
    assert exc.value.message == "Failed to process bill image"
    assert "secret" not in str(exc.value)

# billbook/extraction.py
from __future__ import annotations

import base64
import binascii
import json
import logging
import mimetypes
import os
import re
import tempfile
from typing import Any, Optional

import google.generativeai as genai
from pydantic import ValidationError

from .config import settings
from .errors import ExtractionFailed, ParseFailed, ValidationFailed
from .schemas import BillData

log = logging.getLogger(__name__)

EXTRACTION_PROMPT = """
Extract the following information from this bill image and format it as valid JSON:

{
  "bill_number": "",
  "bill_date": "YYYY-MM-DD",
  "location": "",
  "total_billed_amount": 0,
  "supplier": {
    "name": "",
    "gstin": "",
    "address": {"street": "", "city": "", "state": "", "pincode": ""},
    "phone": {"office": [], "mobile": []}
  },
  "party": {
    "name": "",
    "gstin": "",
    "address": {"street": "", "city": "", "state": "", "pincode": ""},
    "phone": {"office": [], "mobile": []}
  },
  "items": [
    {"name": "", "hsn": "", "quantity": 0, "rate": 0, "amount": 0}
  ]
}

Look at the image carefully and extract all visible text. The supplier is the
seller issuing the bill; the party is the buyer it is billed to. For any field
you cannot find data for, use null, empty strings, or empty arrays as
appropriate. Do not guess values that are not printed. Return only the JSON.
"""

# ```json ... ``` or ``` ... ``` around the whole reply
_FENCE_OPEN = re.compile(r"^\s*```[A-Za-z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")
_FENCED_BLOCK = re.compile(r"```[A-Za-z]*\s*(.*?)```", re.S)
_DATA_URL = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,", re.I)

_configured = False


def strip_code_fences(raw_text: str) -> str:
    """Remove a markdown code fence wrapping the model reply, if any."""
    s = (raw_text or "").strip()
    if not s.startswith("```"):
        inner = _FENCED_BLOCK.search(s)
        if inner:
            return inner.group(1).strip()
        return s
    s = _FENCE_OPEN.sub("", s, count=1)
    s = _FENCE_CLOSE.sub("", s, count=1)
    return s.strip()


def parse_model_response(raw_text: str) -> BillData:
    cleaned = strip_code_fences(raw_text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        log.error("Model returned non-JSON output (%s). Raw response:\n%s", e, raw_text)
        raise ParseFailed() from e
    if not isinstance(payload, dict):
        log.error("Model returned JSON that is not an object. Raw response:\n%s", raw_text)
        raise ParseFailed()
    try:
        return BillData.model_validate(payload)
    except ValidationError as e:
        log.error("Model JSON does not match the bill shape: %s\nRaw response:\n%s", e, raw_text)
        raise ParseFailed() from e


def get_vision_model():
    global _configured
    if not settings.GEMINI_API_KEY:
        raise ExtractionFailed("Bill extraction is not configured (missing GEMINI_API_KEY)")
    if not _configured:
        genai.configure(api_key=settings.GEMINI_API_KEY)
        _configured = True
    return genai.GenerativeModel(
        settings.GEMINI_MODEL,
        generation_config={"temperature": 0.1},
    )


def _response_text(response: Any) -> str:
    try:
        text = response.text
    except (AttributeError, ValueError) as e:
        # .text raises ValueError when the candidate was blocked / has no parts
        log.error("Model response has no text: %s", e)
        raise ExtractionFailed() from e
    if not text or not text.strip():
        log.error("Model returned an empty response")
        raise ExtractionFailed()
    return text


def extract_bill_data(image_path: str, model: Optional[Any] = None) -> BillData:
    """
    Send one bill image to the vision model and parse its reply.

    Single attempt, no retry. Network/model failures raise ExtractionFailed,
    unusable replies raise ParseFailed.
    """
    try:
        with open(image_path, "rb") as f:
            image_bytes = f.read()
    except OSError as e:
        log.error("Cannot read bill image %s: %s", image_path, e)
        raise ExtractionFailed() from e

    mime_type, _ = mimetypes.guess_type(image_path)
    if not mime_type or not mime_type.startswith("image/"):
        mime_type = "image/jpeg"

    model = model or get_vision_model()
    try:
        response = model.generate_content(
            [EXTRACTION_PROMPT, {"mime_type": mime_type, "data": image_bytes}],
            request_options={"timeout": settings.GEMINI_TIMEOUT},
        )
    except Exception as e:
        log.exception("Bill image processing error")
        raise ExtractionFailed() from e

    return parse_model_response(_response_text(response))


def extract_from_bytes(data: bytes, filename: Optional[str] = None, model: Optional[Any] = None) -> BillData:
    """Stage the image in a temporary file, extract, and always remove the file."""
    suffix = os.path.splitext(filename or "")[1] or ".jpg"
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix="bill-", suffix=suffix, dir=settings.UPLOAD_DIR)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return extract_bill_data(tmp_path, model=model)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("Failed to delete temp file %s: %s", tmp_path, e)


def decode_image_payload(payload: str) -> tuple[bytes, Optional[str]]:
    """
    Accept raw base64 or a data URL ("data:image/png;base64,....").
    Returns (bytes, extension-or-None).
    """
    s = (payload or "").strip()
    ext = None
    m = _DATA_URL.match(s)
    if m:
        ext = mimetypes.guess_extension(m.group("mime"))
        s = s[m.end():]
    s = re.sub(r"\s+", "", s)
    try:
        data = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationFailed("Invalid image data", {"image": "Expected base64-encoded image bytes"}) from e
    if not data:
        raise ValidationFailed("No bill image provided", {"image": "Image is empty"})
    return data, ext

# billbook/validators.py
from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ValidationFailed

# ---------------------- Formats ----------------------
GSTIN_RE = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
MOBILE_RE = re.compile(r"^[0-9]{10}$")
PINCODE_RE = re.compile(r"^[0-9]{6}$")

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y")

# |quantity * rate - amount| must stay below this (rounding on printed bills)
AMOUNT_TOLERANCE = Decimal("1")

PAYMENT_STATUSES = ("paid", "unpaid")


def normalize_mobile(raw: str) -> str:
    """'+91 98765-43210' / '098765 43210' -> '9876543210'. Returns digits only."""
    d = re.sub(r"\D", "", raw or "")
    if len(d) == 12 and d.startswith("91"):
        d = d[2:]
    elif len(d) == 11 and d.startswith("0"):
        d = d[1:]
    return d


def parse_bill_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        # ISO timestamps from JS clients: "2024-01-01T00:00:00.000Z"
        if "T" in s:
            s = s.split("T", 1)[0]
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
    raise ValueError("bill_date must be a valid date (YYYY-MM-DD)")


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


# ---------------------- Contact profile ----------------------
class AddressIn(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    post: Optional[str] = None
    district: Optional[str] = None
    state: str = Field(min_length=1)
    pincode: str
    st_code: Optional[str] = None

    @field_validator("street", "city", "post", "district", "st_code", mode="before")
    @classmethod
    def _optional_text(cls, v):
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("state", mode="before")
    @classmethod
    def _state(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("pincode", mode="before")
    @classmethod
    def _pincode(cls, v):
        if isinstance(v, int):
            v = str(v)
        if not isinstance(v, str) or not PINCODE_RE.match(v.strip()):
            raise ValueError("pincode must be exactly 6 digits")
        return v.strip()


class PhoneIn(BaseModel):
    office: List[str] = Field(default_factory=list)
    mobile: List[str] = Field(default_factory=list)

    @field_validator("office", "mobile", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [p for p in re.split(r"[,;]", v) if p.strip()]
        return v

    @field_validator("office")
    @classmethod
    def _office(cls, v: List[str]) -> List[str]:
        return [s.strip() for s in v if s and s.strip()]

    @field_validator("mobile")
    @classmethod
    def _mobile(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for raw in v:
            if not raw or not raw.strip():
                continue
            num = normalize_mobile(raw)
            if not MOBILE_RE.match(num):
                raise ValueError(f"Invalid mobile number format: {raw!r}")
            if num not in out:
                out.append(num)
        return out


def _check_gstin(v: Any) -> str:
    if not isinstance(v, str):
        raise ValueError("gstin is required")
    g = v.strip().upper()
    if not GSTIN_RE.match(g):
        raise ValueError("Invalid GSTIN format")
    return g


class ContactProfileIn(BaseModel):
    """A new Supplier or Party together with the Address and Phone it owns."""

    name: str = Field(min_length=1)
    gstin: str
    address: AddressIn
    phone: PhoneIn

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("gstin", mode="before")
    @classmethod
    def _gstin(cls, v):
        return _check_gstin(v)

    @field_validator("phone")
    @classmethod
    def _needs_mobile(cls, v: PhoneIn) -> PhoneIn:
        if not v.mobile:
            raise ValueError("At least one mobile number is required")
        return v


class ContactProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    gstin: Optional[str] = None
    address: Optional[AddressIn] = None
    phone: Optional[PhoneIn] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("gstin", mode="before")
    @classmethod
    def _gstin(cls, v):
        return None if _blank_to_none(v) is None else _check_gstin(v)

    @field_validator("phone")
    @classmethod
    def _needs_mobile(cls, v: Optional[PhoneIn]) -> Optional[PhoneIn]:
        if v is not None and not v.mobile:
            raise ValueError("At least one mobile number is required")
        return v


# ---------------------- Bill ----------------------
class BillItemIn(BaseModel):
    name: str = Field(min_length=1)
    hsn: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    rate: Decimal = Field(gt=0)
    amount: Decimal = Field(gt=0)

    @field_validator("name", "hsn", mode="before")
    @classmethod
    def _text(cls, v):
        if isinstance(v, int):
            v = str(v)
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _amount_matches(self) -> "BillItemIn":
        if abs(self.quantity * self.rate - self.amount) >= AMOUNT_TOLERANCE:
            raise ValueError("amount must equal quantity x rate")
        return self


class _BillFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("bill_number", "location", mode="before", check_fields=False)
    @classmethod
    def _text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("bill_date", mode="before", check_fields=False)
    @classmethod
    def _date(cls, v):
        if v is None:
            return v
        return parse_bill_date(v)

    @field_validator("payment_status", mode="before", check_fields=False)
    @classmethod
    def _status(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("supplier_id", "party_id", mode="before", check_fields=False)
    @classmethod
    def _ref(cls, v):
        v = _blank_to_none(v)
        return v.strip() if isinstance(v, str) else v


class BillSubmission(_BillFields):
    bill_number: str = Field(min_length=1)
    bill_date: date
    location: str = Field(min_length=1)
    total_billed_amount: Decimal = Field(gt=0)
    payment_status: Literal["paid", "unpaid"]

    supplier_id: Optional[str] = Field(default=None, alias="supplierId")
    party_id: Optional[str] = Field(default=None, alias="partyId")
    new_supplier: Optional[ContactProfileIn] = Field(default=None, alias="newSupplier")
    new_party: Optional[ContactProfileIn] = Field(default=None, alias="newParty")

    items: List[BillItemIn] = Field(min_length=1)


class BillUpdate(_BillFields):
    bill_number: Optional[str] = Field(default=None, min_length=1)
    bill_date: Optional[date] = None
    location: Optional[str] = Field(default=None, min_length=1)
    total_billed_amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_status: Optional[Literal["paid", "unpaid"]] = None
    supplier_id: Optional[str] = Field(default=None, alias="supplierId")
    party_id: Optional[str] = Field(default=None, alias="partyId")
    items: Optional[List[BillItemIn]] = Field(default=None, min_length=1)


# ---------------------- Entry points ----------------------
def format_errors(exc: ValidationError) -> Dict[str, str]:
    """pydantic errors -> {"items.0.rate": "Input should be greater than 0", ...}"""
    return format_error_list(exc.errors())


def format_error_list(errors, skip_prefix: Optional[str] = None) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for err in errors:
        loc = list(err.get("loc", ()))
        if skip_prefix and loc and loc[0] == skip_prefix:
            loc = loc[1:]
        path = ".".join(str(p) for p in loc) or "body"
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        out.setdefault(path, msg)
    return out


def _reference_errors(sub: BillSubmission) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not sub.supplier_id and sub.new_supplier is None:
        errors["supplier"] = "Either select an existing supplier or add a new one"
    elif sub.supplier_id and sub.new_supplier is not None:
        errors["supplier"] = "Provide either supplierId or newSupplier, not both"
    if not sub.party_id and sub.new_party is None:
        errors["party"] = "Either select an existing party or add a new one"
    elif sub.party_id and sub.new_party is not None:
        errors["party"] = "Provide either partyId or newParty, not both"
    return errors


def _parse(model: type[BaseModel], data: Any, what: str):
    if not isinstance(data, dict):
        raise ValidationFailed(f"Invalid {what}", {"body": "Expected a JSON object"})
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailed(f"Invalid {what}", format_errors(e)) from e


def validate_bill_submission(data: Any) -> BillSubmission:
    """Structural validation of a bill submission, then the supplier/party reference rule."""
    sub = _parse(BillSubmission, data, "bill data")
    errors = _reference_errors(sub)
    if errors:
        raise ValidationFailed("Invalid bill data", errors)
    return sub


def validate_bill_update(data: Any) -> BillUpdate:
    return _parse(BillUpdate, data, "bill data")


def validate_contact_profile(data: Any) -> ContactProfileIn:
    return _parse(ContactProfileIn, data, "contact details")


def validate_contact_profile_update(data: Any) -> ContactProfileUpdate:
    return _parse(ContactProfileUpdate, data, "contact details")

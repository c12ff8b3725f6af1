from __future__ import annotations

import math
from datetime import date, datetime
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator


# ---------------------- Stored entities ----------------------
class AddressOut(BaseModel):
    id: str
    street: Optional[str] = None
    city: Optional[str] = None
    post: Optional[str] = None
    district: Optional[str] = None
    state: str
    pincode: str
    st_code: Optional[str] = None
    model_config = {"from_attributes": True}


class PhoneOut(BaseModel):
    id: str
    office: List[str] = Field(default_factory=list)
    mobile: List[str] = Field(default_factory=list)
    model_config = {"from_attributes": True}


class ContactProfileOut(BaseModel):
    id: str
    name: str
    gstin: str
    address: Optional[AddressOut] = None
    phone: Optional[PhoneOut] = None
    model_config = {"from_attributes": True}


class ContactProfileListRow(ContactProfileOut):
    bills: int = 0


class BillItemOut(BaseModel):
    id: str
    name: str
    hsn: str
    quantity: float
    rate: float
    amount: float
    model_config = {"from_attributes": True}


class BillOut(BaseModel):
    id: str
    bill_number: str
    bill_date: date
    location: str
    total_billed_amount: float
    payment_status: str
    supplierId: str = Field(validation_alias="supplier_id")
    partyId: str = Field(validation_alias="party_id")
    supplier: Optional[ContactProfileOut] = None
    party: Optional[ContactProfileOut] = None
    items: List[BillItemOut] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# ---------------------- Extraction (model output shape) ----------------------
# Model replies are loose: anything unreadable becomes "", [] or None so the
# reviewer can fill it in, instead of rejecting the whole reply.
def _text_value(v) -> str:
    if isinstance(v, str):
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return ""


def _num_value(v) -> Optional[float]:
    if isinstance(v, bool):
        return None
    if isinstance(v, str):
        v = v.replace(",", "").strip()
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _obj_value(v) -> dict:
    return v if isinstance(v, dict) else {}


class ExtractedAddress(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""

    @field_validator("street", "city", "state", "pincode", mode="before")
    @classmethod
    def _text(cls, v):
        return _text_value(v)


class ExtractedPhone(BaseModel):
    office: List[str] = Field(default_factory=list)
    mobile: List[str] = Field(default_factory=list)

    @field_validator("office", "mobile", mode="before")
    @classmethod
    def _list(cls, v):
        if isinstance(v, (str, int, float)) and not isinstance(v, bool):
            v = [v]
        if not isinstance(v, list):
            return []
        return [s for s in (_text_value(x).strip() for x in v) if s]


class ExtractedContact(BaseModel):
    name: str = ""
    gstin: str = ""
    address: ExtractedAddress = Field(default_factory=ExtractedAddress)
    phone: ExtractedPhone = Field(default_factory=ExtractedPhone)

    @field_validator("name", "gstin", mode="before")
    @classmethod
    def _text(cls, v):
        return _text_value(v)

    @field_validator("address", "phone", mode="before")
    @classmethod
    def _obj(cls, v):
        return _obj_value(v)


class ExtractedItem(BaseModel):
    name: str = ""
    hsn: str = ""
    quantity: Optional[float] = None
    rate: Optional[float] = None
    amount: Optional[float] = None

    @field_validator("name", "hsn", mode="before")
    @classmethod
    def _text(cls, v):
        return _text_value(v)

    @field_validator("quantity", "rate", "amount", mode="before")
    @classmethod
    def _num(cls, v):
        return _num_value(v)


class BillData(BaseModel):
    """Structured bill as read off an image. Missing data stays empty, never invented."""

    bill_number: str = ""
    bill_date: str = ""
    location: str = ""
    total_billed_amount: Optional[float] = None
    supplier: ExtractedContact = Field(default_factory=ExtractedContact)
    party: ExtractedContact = Field(default_factory=ExtractedContact)
    items: List[ExtractedItem] = Field(default_factory=list)

    @field_validator("bill_number", "bill_date", "location", mode="before")
    @classmethod
    def _text(cls, v):
        return _text_value(v)

    @field_validator("total_billed_amount", mode="before")
    @classmethod
    def _num(cls, v):
        return _num_value(v)

    @field_validator("supplier", "party", mode="before")
    @classmethod
    def _obj(cls, v):
        return _obj_value(v)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v):
        # stray strings or numbers in the list are not line items
        return [it for it in v if isinstance(it, dict)] if isinstance(v, list) else []


class ProcessImageIn(BaseModel):
    image: str = Field(min_length=1)
    filename: Optional[str] = None


# ---------------------- Users / auth ----------------------
Password72 = Annotated[str, StringConstraints(min_length=6, max_length=72)]
Email = Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")]
Role = Literal["ADMIN", "STAFF"]


class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: Email
    password: Password72
    role: Role = "STAFF"


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[Email] = None
    password: Optional[Password72] = None
    role: Optional[Role] = None


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    role: str
    created_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class LoginBody(BaseModel):
    email: str
    password: str


# ---------------------- Dashboard ----------------------
class MonthSlice(BaseModel):
    month: str  # YYYY-MM
    paid: float = 0.0
    unpaid: float = 0.0


class TopEntity(BaseModel):
    id: str
    name: str
    bills: int
    amount: float


class DashboardOut(BaseModel):
    bills_total: int
    suppliers_total: int
    parties_total: int
    total_billed: float
    paid_amount: float
    unpaid_amount: float
    paid_count: int
    unpaid_count: int
    monthly: List[MonthSlice]
    top_suppliers: List[TopEntity]
    top_parties: List[TopEntity]

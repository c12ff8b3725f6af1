from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; stored the same way on PostgreSQL and SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Address(Base):
    __tablename__ = "addresses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    street: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    post: Mapped[str | None] = mapped_column(String(128), nullable=True)
    district: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str] = mapped_column(String(128), nullable=False)
    pincode: Mapped[str] = mapped_column(String(6), nullable=False)
    st_code: Mapped[str | None] = mapped_column(String(8), nullable=True)

    def __repr__(self) -> str:
        return f"<Address id={self.id} state={self.state} pincode={self.pincode}>"


class Phone(Base):
    __tablename__ = "phones"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    office: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    mobile: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Phone id={self.id} mobile={self.mobile}>"


class ContactProfileMixin:
    """Columns shared by Supplier and Party: a named, GSTIN-keyed owner of one Address and one Phone."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    gstin: Mapped[str] = mapped_column(String(15), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    @declared_attr
    def address_id(cls) -> Mapped[str]:
        return mapped_column(ForeignKey("addresses.id"), unique=True, nullable=False)

    @declared_attr
    def phone_id(cls) -> Mapped[str]:
        return mapped_column(ForeignKey("phones.id"), unique=True, nullable=False)

    @declared_attr
    def address(cls) -> Mapped[Address]:
        return relationship(Address, lazy="joined")

    @declared_attr
    def phone(cls) -> Mapped[Phone]:
        return relationship(Phone, lazy="joined")


class Supplier(ContactProfileMixin, Base):
    __tablename__ = "suppliers"

    bills: Mapped[list["Bill"]] = relationship(back_populates="supplier")

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} gstin={self.gstin} name={self.name!r}>"


class Party(ContactProfileMixin, Base):
    __tablename__ = "parties"

    bills: Mapped[list["Bill"]] = relationship(back_populates="party")

    def __repr__(self) -> str:
        return f"<Party id={self.id} gstin={self.gstin} name={self.name!r}>"


class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bill_number: Mapped[str] = mapped_column(String(64), nullable=False)
    bill_date: Mapped[date] = mapped_column(Date, nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    total_billed_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(8), nullable=False, default="unpaid")

    supplier_id: Mapped[str] = mapped_column(ForeignKey("suppliers.id"), index=True, nullable=False)
    party_id: Mapped[str] = mapped_column(ForeignKey("parties.id"), index=True, nullable=False)
    supplier: Mapped[Supplier] = relationship(back_populates="bills")
    party: Mapped[Party] = relationship(back_populates="bills")

    items: Mapped[list["BillItem"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillItem.position",
        passive_deletes=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("bill_number", "bill_date", name="uq_bill_number_date"),
        CheckConstraint("total_billed_amount > 0", name="ck_bills_total_pos"),
        CheckConstraint("payment_status IN ('paid', 'unpaid')", name="ck_bills_payment_status"),
    )

    def __repr__(self) -> str:
        return f"<Bill id={self.id} no={self.bill_number} date={self.bill_date} status={self.payment_status}>"


class BillItem(Base):
    __tablename__ = "bill_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bill_id: Mapped[str] = mapped_column(ForeignKey("bills.id", ondelete="CASCADE"), index=True)
    bill: Mapped[Bill] = relationship(back_populates="items")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    hsn: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_bill_items_qty_pos"),
        CheckConstraint("rate > 0", name="ck_bill_items_rate_pos"),
        CheckConstraint("amount > 0", name="ck_bill_items_amount_pos"),
    )

    def __repr__(self) -> str:
        return f"<BillItem id={self.id} bill={self.bill_id} qty={self.quantity} hsn={self.hsn}>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(8), nullable=False, default="STAFF")  # ADMIN|STAFF
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    sessions: Mapped[list["UserSession"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class UserSession(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_id: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    user: Mapped[User] = relationship(back_populates="sessions")
    expires: Mapped[datetime] = mapped_column(DateTime, nullable=False)

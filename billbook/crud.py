import logging
from typing import List, Optional, Tuple, Type

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from . import models
from .errors import ConflictError, NotFoundError, ReferentialGuardError, ValidationFailed
from .validators import BillItemIn, BillUpdate, ContactProfileIn, ContactProfileUpdate

logger = logging.getLogger(__name__)

ProfileModel = Type[models.ContactProfileMixin]

# "Supplier" / "Party" for messages
def _label(model: ProfileModel) -> str:
    return model.__name__


# ============================================================
# Suppliers & Parties (one implementation for both kinds)
# ============================================================
def get_profile(db: Session, model: ProfileModel, profile_id: str):
    obj = db.get(model, profile_id)
    if obj is None:
        raise NotFoundError(f"{_label(model)} not found")
    return obj


def get_profile_by_gstin(db: Session, model: ProfileModel, gstin: str):
    return db.execute(select(model).where(model.gstin == gstin)).unique().scalar_one_or_none()


def list_profiles(db: Session, model: ProfileModel) -> List[Tuple[models.ContactProfileMixin, int]]:
    """Profiles with their address, phone and the number of bills referencing them."""
    fk = models.Bill.supplier_id if model is models.Supplier else models.Bill.party_id
    counts = dict(db.execute(select(fk, func.count(models.Bill.id)).group_by(fk)).all())
    rows = db.execute(select(model).order_by(model.name)).unique().scalars().all()
    return [(obj, int(counts.get(obj.id, 0))) for obj in rows]


def check_contact_payload(model: ProfileModel, payload: ContactProfileIn) -> None:
    label = _label(model)
    if not payload.address.state or not payload.address.pincode:
        raise ValidationFailed(f"{label} address must include state and pincode")
    if not payload.phone.mobile:
        raise ValidationFailed(f"{label} must have at least one mobile number")


def create_contact_profile(db: Session, model: ProfileModel, payload: ContactProfileIn):
    """
    Create Address -> Phone -> Supplier/Party, in that order, and flush.
    Caller owns the transaction.
    """
    label = _label(model)
    if get_profile_by_gstin(db, model, payload.gstin) is not None:
        raise ConflictError(f"{label} with the same GSTIN already exists")
    check_contact_payload(model, payload)

    address = models.Address(**payload.address.model_dump())
    db.add(address)
    db.flush()

    phone = models.Phone(office=list(payload.phone.office), mobile=list(payload.phone.mobile))
    db.add(phone)
    db.flush()

    obj = model(name=payload.name, gstin=payload.gstin, address=address, phone=phone)
    db.add(obj)
    db.flush()
    logger.info("Created %s %s (gstin=%s)", label.lower(), obj.id, obj.gstin)
    return obj


def update_contact_profile(db: Session, model: ProfileModel, profile_id: str, payload: ContactProfileUpdate):
    obj = get_profile(db, model, profile_id)
    label = _label(model)
    if payload.gstin and payload.gstin != obj.gstin:
        other = get_profile_by_gstin(db, model, payload.gstin)
        if other is not None and other.id != obj.id:
            raise ConflictError(f"{label} with the same GSTIN already exists")
        obj.gstin = payload.gstin
    if payload.name:
        obj.name = payload.name
    if payload.address is not None:
        for k, v in payload.address.model_dump().items():
            setattr(obj.address, k, v)
    if payload.phone is not None:
        obj.phone.office = list(payload.phone.office)
        obj.phone.mobile = list(payload.phone.mobile)
    db.flush()
    return obj


def count_bills_for(db: Session, model: ProfileModel, profile_id: str) -> int:
    fk = models.Bill.supplier_id if model is models.Supplier else models.Bill.party_id
    return db.execute(select(func.count(models.Bill.id)).where(fk == profile_id)).scalar_one()


def delete_contact_profile(db: Session, model: ProfileModel, profile_id: str) -> None:
    """Delete the profile, then the Address and Phone it owned. Refused while bills reference it."""
    label = _label(model)
    obj = get_profile(db, model, profile_id)
    if count_bills_for(db, model, profile_id) > 0:
        raise ReferentialGuardError(f"Cannot delete {label.lower()} with associated bills")
    address, phone = obj.address, obj.phone
    db.delete(obj)
    db.flush()
    db.delete(address)
    db.delete(phone)
    db.flush()
    logger.info("Deleted %s %s with its address and phone", label.lower(), profile_id)


def bills_for(db: Session, model: ProfileModel, profile_id: str) -> List[models.Bill]:
    get_profile(db, model, profile_id)
    fk = models.Bill.supplier_id if model is models.Supplier else models.Bill.party_id
    return list(
        db.execute(_bill_query().where(fk == profile_id).order_by(models.Bill.bill_date.desc()))
        .unique()
        .scalars()
        .all()
    )


# ============================================================
# Bills
# ============================================================
def _bill_query():
    return select(models.Bill).options(
        selectinload(models.Bill.items),
        selectinload(models.Bill.supplier),
        selectinload(models.Bill.party),
    )


def list_bills(db: Session, skip: int = 0, limit: int = 100) -> List[models.Bill]:
    q = _bill_query().order_by(models.Bill.bill_date.desc(), models.Bill.created_at.desc()).offset(skip).limit(limit)
    return list(db.execute(q).unique().scalars().all())


def get_bill(db: Session, bill_id: str) -> models.Bill:
    bill = db.execute(_bill_query().where(models.Bill.id == bill_id)).unique().scalar_one_or_none()
    if bill is None:
        raise NotFoundError("Bill not found")
    return bill


def find_duplicate_bill(db: Session, bill_number: str, bill_date, exclude_id: Optional[str] = None):
    q = select(models.Bill).where(models.Bill.bill_number == bill_number, models.Bill.bill_date == bill_date)
    if exclude_id:
        q = q.where(models.Bill.id != exclude_id)
    return db.execute(q.limit(1)).scalars().first()


def build_items(items: List[BillItemIn]) -> List[models.BillItem]:
    return [
        models.BillItem(
            position=i,
            name=it.name,
            hsn=it.hsn,
            quantity=it.quantity,
            rate=it.rate,
            amount=it.amount,
        )
        for i, it in enumerate(items)
    ]


def update_bill(db: Session, bill_id: str, changes: BillUpdate) -> models.Bill:
    """Apply a partial update. Caller owns the transaction."""
    bill = get_bill(db, bill_id)

    number = changes.bill_number or bill.bill_number
    bill_date = changes.bill_date or bill.bill_date
    if (number, bill_date) != (bill.bill_number, bill.bill_date):
        if find_duplicate_bill(db, number, bill_date, exclude_id=bill.id) is not None:
            raise ConflictError("Bill with the same bill number and date already exists")
        bill.bill_number, bill.bill_date = number, bill_date

    if changes.supplier_id and changes.supplier_id != bill.supplier_id:
        bill.supplier = get_profile(db, models.Supplier, changes.supplier_id)
    if changes.party_id and changes.party_id != bill.party_id:
        bill.party = get_profile(db, models.Party, changes.party_id)

    if changes.location:
        bill.location = changes.location
    if changes.total_billed_amount is not None:
        bill.total_billed_amount = changes.total_billed_amount
    if changes.payment_status:
        bill.payment_status = changes.payment_status

    if changes.items is not None:
        bill.items.clear()
        db.flush()
        bill.items.extend(build_items(changes.items))

    db.flush()
    return bill


def delete_bill(db: Session, bill_id: str) -> models.Bill:
    bill = get_bill(db, bill_id)
    db.delete(bill)
    db.flush()
    logger.info("Deleted bill %s (%s, %s) with %d items", bill.id, bill.bill_number, bill.bill_date, len(bill.items))
    return bill


# ============================================================
# Users
# ============================================================
def get_user(db: Session, user_id: str) -> models.User:
    user = db.get(models.User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.execute(select(models.User).where(models.User.email == email.strip().lower())).scalar_one_or_none()


def list_users(db: Session) -> List[models.User]:
    return list(db.execute(select(models.User).order_by(models.User.created_at)).scalars().all())


def create_user(db: Session, name: str, email: str, hashed_password: str, role: str = "STAFF") -> models.User:
    if get_user_by_email(db, email) is not None:
        raise ConflictError("Email already registered")
    user = models.User(name=name, email=email.strip().lower(), hashed_password=hashed_password, role=role)
    db.add(user)
    db.flush()
    return user


def delete_user(db: Session, user_id: str) -> None:
    user = get_user(db, user_id)
    db.delete(user)
    db.flush()


def update_user(
    db: Session,
    user_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    hashed_password: Optional[str] = None,
    role: Optional[str] = None,
) -> models.User:
    user = get_user(db, user_id)
    if email and email.strip().lower() != user.email:
        other = get_user_by_email(db, email)
        if other is not None and other.id != user.id:
            raise ConflictError("Email already registered")
        user.email = email.strip().lower()
    if name:
        user.name = name
    if hashed_password:
        user.hashed_password = hashed_password
    if role:
        user.role = role
    db.flush()
    return user

import logging
from typing import Optional, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models
from .db import serializable_transaction
from .errors import BillbookError, ConflictError, ValidationFailed, classify_db_error
from .validators import PAYMENT_STATUSES, BillSubmission, BillUpdate, ContactProfileIn

logger = logging.getLogger(__name__)


def _resolve_profile(
    db: Session,
    model: Type[models.ContactProfileMixin],
    existing_id: Optional[str],
    new_profile: Optional[ContactProfileIn],
):
    """Existing id must exist; otherwise create the new profile. Exactly one path runs."""
    if existing_id:
        return crud.get_profile(db, model, existing_id)
    if new_profile is not None:
        return crud.create_contact_profile(db, model, new_profile)
    label = model.__name__.lower()
    raise ValidationFailed(
        f"Either {label} ID or new {label} details must be provided",
        {label: f"Either select an existing {label} or add a new one"},
    )


def _run_in_transaction(db: Session, work):
    try:
        with serializable_transaction(db):
            return work()
    except BillbookError:
        raise
    except SQLAlchemyError as e:
        err = classify_db_error(e)
        logger.error("Bill transaction aborted: %s (%s)", err.message, e.__class__.__name__)
        raise err from e


def save_bill(db: Session, sub: BillSubmission) -> models.Bill:
    """
    Persist a validated submission atomically:
    duplicate check -> supplier -> party -> bill + items.
    Nothing is kept if any step fails.
    """

    def work() -> models.Bill:
        if crud.find_duplicate_bill(db, sub.bill_number, sub.bill_date) is not None:
            raise ConflictError("Bill with the same bill number and date already exists")

        supplier = _resolve_profile(db, models.Supplier, sub.supplier_id, sub.new_supplier)
        party = _resolve_profile(db, models.Party, sub.party_id, sub.new_party)

        if sub.payment_status not in PAYMENT_STATUSES:
            raise ValidationFailed('Payment status must be either "paid" or "unpaid"')

        bill = models.Bill(
            bill_number=sub.bill_number,
            bill_date=sub.bill_date,
            location=sub.location,
            total_billed_amount=sub.total_billed_amount,
            payment_status=sub.payment_status,
            supplier=supplier,
            party=party,
            items=crud.build_items(sub.items),
        )
        db.add(bill)
        db.flush()
        return bill

    bill = _run_in_transaction(db, work)
    logger.info(
        "Saved bill %s (%s, %s) with %d items", bill.id, bill.bill_number, bill.bill_date, len(bill.items)
    )
    return crud.get_bill(db, bill.id)


def update_bill(db: Session, bill_id: str, changes: BillUpdate) -> models.Bill:
    bill = _run_in_transaction(db, lambda: crud.update_bill(db, bill_id, changes))
    return crud.get_bill(db, bill.id)


def delete_bill(db: Session, bill_id: str) -> models.Bill:
    return _run_in_transaction(db, lambda: crud.delete_bill(db, bill_id))


def create_profile(db: Session, model: Type[models.ContactProfileMixin], payload: ContactProfileIn):
    return _run_in_transaction(db, lambda: crud.create_contact_profile(db, model, payload))


def update_profile(db: Session, model, profile_id: str, payload):
    return _run_in_transaction(db, lambda: crud.update_contact_profile(db, model, profile_id, payload))


def delete_profile(db: Session, model, profile_id: str) -> None:
    _run_in_transaction(db, lambda: crud.delete_contact_profile(db, model, profile_id))

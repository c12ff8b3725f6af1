import pytest
from sqlalchemy import func, select

from billbook import crud, models, pipeline
from billbook.db import serializable_transaction
from billbook.errors import ConflictError, NotFoundError, ReferentialGuardError, ValidationFailed
from billbook.validators import (
    validate_bill_submission,
    validate_bill_update,
    validate_contact_profile,
    validate_contact_profile_update,
)


def _count(db, model):
    return db.scalar(select(func.count()).select_from(model))


def _counts(db):
    return {m.__name__: _count(db, m) for m in (models.Address, models.Phone, models.Supplier,
                                                 models.Party, models.Bill, models.BillItem)}


def _save(db, payload):
    return pipeline.save_bill(db, validate_bill_submission(payload))


def test_new_supplier_and_party_saved_together(db, bill_payload):
    bill = _save(db, bill_payload())

    assert _counts(db) == {"Address": 2, "Phone": 2, "Supplier": 1, "Party": 1, "Bill": 1, "BillItem": 1}
    assert bill.supplier.gstin == "32EHSPK6796N1Z8"
    assert bill.party.address.pincode == "682030"
    assert bill.payment_status == "unpaid"


def test_round_trip(db, bill_payload):
    items = [
        {"name": "Cement", "hsn": "2523", "quantity": 10, "rate": 100, "amount": 1000},
        {"name": "Steel rod", "hsn": "7214", "quantity": 2.5, "rate": 60, "amount": 150},
    ]
    saved = _save(db, bill_payload(items=items, total_billed_amount=1150))
    db.expunge_all()

    bill = crud.get_bill(db, saved.id)
    assert [i.name for i in bill.items] == ["Cement", "Steel rod"]
    assert [float(i.quantity) for i in bill.items] == [10.0, 2.5]
    assert float(bill.total_billed_amount) == 1150.0
    assert bill.supplier.name == "A2Z Buildwares"
    assert bill.supplier.phone.mobile == ["9496865950"]
    assert bill.party.name == "Joy Mynatty"
    assert bill.party.address.state == "Kerala"


def test_resubmission_conflicts_and_adds_nothing(db, bill_payload):
    _save(db, bill_payload())
    before = _counts(db)

    with pytest.raises(ConflictError):
        _save(db, bill_payload())

    assert _counts(db) == before


def test_existing_supplier_by_id(db, bill_payload, supplier_payload):
    supplier = pipeline.create_profile(db, models.Supplier, validate_contact_profile(supplier_payload))

    bill = _save(db, bill_payload(newSupplier=None, supplierId=supplier.id))

    assert bill.supplier_id == supplier.id
    assert _count(db, models.Supplier) == 1


def test_unknown_supplier_id_is_not_found(db, bill_payload):
    with pytest.raises(NotFoundError):
        _save(db, bill_payload(newSupplier=None, supplierId="does-not-exist"))
    assert _counts(db)["Bill"] == 0


def test_neither_supplier_path_is_validation_error(bill_payload):
    with pytest.raises(ValidationFailed):
        validate_bill_submission(bill_payload(newSupplier=None))


def test_failure_after_supplier_created_rolls_back_everything(db, bill_payload, party_payload):
    # the party's gstin is already registered, so the party step fails after the supplier step ran
    pipeline.create_profile(db, models.Party, validate_contact_profile(party_payload))
    before = _counts(db)

    with pytest.raises(ConflictError):
        _save(db, bill_payload())

    assert _counts(db) == before
    assert _count(db, models.Supplier) == 0


def test_supplier_gstin_already_registered(db, bill_payload, supplier_payload):
    pipeline.create_profile(db, models.Supplier, validate_contact_profile(supplier_payload))
    with pytest.raises(ConflictError):
        _save(db, bill_payload())
    assert _count(db, models.Party) == 0


def test_same_number_on_another_date_is_allowed(db, bill_payload):
    first = _save(db, bill_payload())
    second = _save(db, bill_payload(
        bill_date="2024-01-16", newSupplier=None, newParty=None,
        supplierId=first.supplier_id, partyId=first.party_id,
    ))
    assert second.id != first.id
    assert _count(db, models.Bill) == 2


def test_update_replaces_items_and_guards_duplicates(db, bill_payload):
    first = _save(db, bill_payload())
    second = _save(db, bill_payload(
        bill_number="INV-002", newSupplier=None, newParty=None,
        supplierId=first.supplier_id, partyId=first.party_id,
    ))

    updated = pipeline.update_bill(db, second.id, validate_bill_update({
        "payment_status": "paid",
        "items": [{"name": "Sand", "hsn": "2505", "quantity": 4, "rate": 50, "amount": 200}],
    }))
    assert updated.payment_status == "paid"
    assert [i.name for i in updated.items] == ["Sand"]
    assert _count(db, models.BillItem) == 2

    with pytest.raises(ConflictError):
        pipeline.update_bill(db, second.id, validate_bill_update({"bill_number": "INV-001"}))


def test_delete_guard_then_cleanup(db, bill_payload):
    bill = _save(db, bill_payload())
    supplier_id = bill.supplier_id

    with pytest.raises(ReferentialGuardError):
        pipeline.delete_profile(db, models.Supplier, supplier_id)

    pipeline.delete_bill(db, bill.id)
    assert _count(db, models.BillItem) == 0

    pipeline.delete_profile(db, models.Supplier, supplier_id)
    assert _count(db, models.Supplier) == 0
    # the party still owns one address and one phone
    assert _count(db, models.Address) == 1
    assert _count(db, models.Phone) == 1


def test_profile_update_gstin_conflict(db, supplier_payload):
    a = pipeline.create_profile(db, models.Supplier, validate_contact_profile(supplier_payload))
    b = pipeline.create_profile(db, models.Supplier, validate_contact_profile(
        dict(supplier_payload, name="Other", gstin="32AABCA1234A1ZV")
    ))

    with pytest.raises(ConflictError):
        pipeline.update_profile(db, models.Supplier, b.id, validate_contact_profile_update({"gstin": a.gstin}))

    renamed = pipeline.update_profile(db, models.Supplier, b.id, validate_contact_profile_update({"name": "Renamed"}))
    assert renamed.name == "Renamed"


def test_transaction_refuses_pending_caller_writes(db):
    db.add(models.Address(state="Kerala", pincode="680308"))
    with pytest.raises(RuntimeError):
        with serializable_transaction(db):
            pass
    db.rollback()
    assert _count(db, models.Address) == 0


def test_open_read_transaction_is_replaced(db, supplier_payload):
    pipeline.create_profile(db, models.Supplier, validate_contact_profile(supplier_payload))
    assert _count(db, models.Supplier) == 1
    assert db.in_transaction()

    with serializable_transaction(db):
        db.add(models.Address(state="Kerala", pincode="682030"))

    assert _count(db, models.Address) == 2

# billbook/dashboard.py
from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import get_current_user
from .db import get_db
from .errors import envelope

router = APIRouter(prefix="/api", tags=["dashboard"], dependencies=[Depends(get_current_user)])


def _f(v: Any) -> float:
    return float(v or 0)


def _top(db: Session, model, fk, limit: int = 5) -> List[Dict[str, Any]]:
    amount = func.coalesce(func.sum(models.Bill.total_billed_amount), 0).label("amount")
    rows = db.execute(
        select(model.id, model.name, func.count(models.Bill.id).label("bills"), amount)
        .join(models.Bill, fk == model.id)
        .group_by(model.id, model.name)
        .order_by(amount.desc(), model.name)
        .limit(limit)
    ).all()
    return [{"id": r.id, "name": r.name, "bills": int(r.bills), "amount": _f(r.amount)} for r in rows]


def build_summary(db: Session) -> Dict[str, Any]:
    """KPIs, paid/unpaid split per month, and the biggest suppliers/parties by billed amount."""
    bills_total = db.scalar(select(func.count(models.Bill.id))) or 0
    suppliers_total = db.scalar(select(func.count(models.Supplier.id))) or 0
    parties_total = db.scalar(select(func.count(models.Party.id))) or 0

    by_status = {
        status: (int(cnt), _f(amt))
        for status, cnt, amt in db.execute(
            select(
                models.Bill.payment_status,
                func.count(models.Bill.id),
                func.coalesce(func.sum(models.Bill.total_billed_amount), 0),
            ).group_by(models.Bill.payment_status)
        ).all()
    }
    paid_count, paid_amount = by_status.get("paid", (0, 0.0))
    unpaid_count, unpaid_amount = by_status.get("unpaid", (0, 0.0))

    # month bucketing in Python keeps this portable across PostgreSQL/SQLite
    monthly: Dict[str, Dict[str, float]] = defaultdict(lambda: {"paid": 0.0, "unpaid": 0.0})
    for bill_date, status, amount in db.execute(
        select(models.Bill.bill_date, models.Bill.payment_status, models.Bill.total_billed_amount)
    ).all():
        monthly[bill_date.strftime("%Y-%m")][status] += _f(amount)

    return {
        "bills_total": int(bills_total),
        "suppliers_total": int(suppliers_total),
        "parties_total": int(parties_total),
        "total_billed": round(paid_amount + unpaid_amount, 2),
        "paid_amount": round(paid_amount, 2),
        "unpaid_amount": round(unpaid_amount, 2),
        "paid_count": paid_count,
        "unpaid_count": unpaid_count,
        "monthly": [
            {"month": m, "paid": round(v["paid"], 2), "unpaid": round(v["unpaid"], 2)}
            for m, v in sorted(monthly.items())
        ],
        "top_suppliers": _top(db, models.Supplier, models.Bill.supplier_id),
        "top_parties": _top(db, models.Party, models.Bill.party_id),
    }


@router.get("/dashboard/summary")
def dashboard_summary(db: Session = Depends(get_db)):
    data = schemas.DashboardOut.model_validate(build_summary(db))
    return envelope(True, 200, "Dashboard summary fetched successfully", data=data.model_dump(mode="json"))

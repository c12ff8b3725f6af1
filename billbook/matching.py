from typing import List, Optional, Type

from rapidfuzz import fuzz
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from . import models


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def find_candidates(
    db: Session,
    model: Type[models.ContactProfileMixin],
    name: Optional[str] = None,
    gstin: Optional[str] = None,
    limit: int = 10,
) -> List[models.ContactProfileMixin]:
    """
    Existing suppliers/parties that could be the one printed on a bill.

    Match = case-insensitive substring on name OR exact GSTIN. Read-only.
    Ordering is deterministic: GSTIN hits first, then fuzzy similarity to
    the queried name, then name and id.
    """
    name = (name or "").strip()
    gstin = (gstin or "").strip().upper()
    conds = []
    if name:
        conds.append(model.name.ilike(f"%{_escape_like(name)}%", escape="\\"))
    if gstin:
        conds.append(model.gstin == gstin)
    if not conds:
        return []

    rows = db.execute(select(model).where(or_(*conds))).unique().scalars().all()

    q = name.lower()

    def _key(obj):
        exact = 0 if gstin and obj.gstin == gstin else 1
        score = fuzz.WRatio(q, obj.name.lower()) if q else 0.0
        return (exact, -score, obj.name.lower(), obj.id)

    return sorted(rows, key=_key)[:limit]


def find_supplier_candidates(db: Session, name: Optional[str] = None, gstin: Optional[str] = None, limit: int = 10):
    return find_candidates(db, models.Supplier, name=name, gstin=gstin, limit=limit)


def find_party_candidates(db: Session, name: Optional[str] = None, gstin: Optional[str] = None, limit: int = 10):
    return find_candidates(db, models.Party, name=name, gstin=gstin, limit=limit)

# billbook/seed_admin.py
import logging

from sqlalchemy import select

from billbook import models
from billbook.auth import get_password_hash
from billbook.config import settings
from billbook.db import SessionLocal, init_db

logger = logging.getLogger(__name__)


def ensure_admin(db=None) -> models.User:
    """Create the first ADMIN from ADMIN_EMAIL / ADMIN_PASSWORD unless that user exists."""
    own_session = db is None
    db = db or SessionLocal()
    try:
        email = settings.ADMIN_EMAIL.strip().lower()
        existing = db.execute(select(models.User).where(models.User.email == email)).scalar_one_or_none()

        if existing:
            logger.info("Admin user already exists: %s", email)
            return existing

        if not settings.ADMIN_PASSWORD:
            raise SystemExit("ADMIN_PASSWORD must be set to create the admin user")

        admin = models.User(
            name=settings.ADMIN_NAME,
            email=email,
            hashed_password=get_password_hash(settings.ADMIN_PASSWORD),
            role="ADMIN",
        )
        db.add(admin)
        db.commit()
        logger.info("Admin user created: %s", email)
        return admin
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    init_db()
    ensure_admin()

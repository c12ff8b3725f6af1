from datetime import timedelta
import hashlib
import hmac
import logging
import secrets
import uuid

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from . import crud, models, schemas
from .config import settings
from .db import get_db
from .errors import ForbiddenError, UnauthorizedError, envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

# =========================
# Hashing
# =========================
_PBKDF2_ROUNDS = 260_000


def get_password_hash(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), _PBKDF2_ROUNDS)
    return f"pbkdf2_sha256${_PBKDF2_ROUNDS}${salt}${digest.hex()}"


def verify_password(plain: str, hashed: str) -> bool:
    try:
        _, rounds, salt, expected = hashed.split("$")
        digest = hashlib.pbkdf2_hmac("sha256", plain.encode("utf-8"), bytes.fromhex(salt), int(rounds))
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), expected)


# =========================
# Sessions (request-scoped, no module-level cookie state)
# =========================
def create_session(db: Session, user_id: str) -> models.UserSession:
    sess = models.UserSession(
        session_id=str(uuid.uuid4()),
        user_id=user_id,
        expires=models.utcnow() + timedelta(days=settings.SESSION_TTL_DAYS),
    )
    db.add(sess)
    db.commit()
    return sess


def get_session_user(db: Session, session_id: str | None) -> models.User | None:
    if not session_id:
        return None
    sess = db.execute(
        select(models.UserSession).where(models.UserSession.session_id == session_id)
    ).scalar_one_or_none()
    if sess is None:
        return None
    if sess.expires < models.utcnow():
        db.delete(sess)
        db.commit()
        return None
    return sess.user


def delete_session(db: Session, session_id: str | None) -> None:
    if not session_id:
        return
    db.execute(delete(models.UserSession).where(models.UserSession.session_id == session_id))
    db.commit()


def set_session_cookie(response: Response, sess: models.UserSession) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE,
        sess.session_id,
        httponly=True,
        path="/",
        samesite="lax",
        secure=settings.COOKIE_SECURE,
        max_age=settings.SESSION_TTL_DAYS * 24 * 3600,
    )


# =========================
# Dependencies
# =========================
def get_current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    user = get_session_user(db, request.cookies.get(settings.SESSION_COOKIE))
    if user is None:
        raise UnauthorizedError()
    return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != "ADMIN":
        raise ForbiddenError()
    return user


# =========================
# Routes
# =========================
@router.post("/login")
def login(body: schemas.LoginBody, response: Response, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(db, body.email)
    if not user or not verify_password(body.password, user.hashed_password):
        raise UnauthorizedError("Invalid credentials")
    sess = create_session(db, user.id)
    set_session_cookie(response, sess)
    logger.info("User %s logged in", user.id)
    return envelope(True, 200, "Login successful", data=schemas.UserOut.model_validate(user).model_dump(mode="json"))


@router.post("/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    delete_session(db, request.cookies.get(settings.SESSION_COOKIE))
    response.delete_cookie(settings.SESSION_COOKIE, path="/")
    return envelope(True, 200, "Logout successful")


@router.post("/register", status_code=201)
def register(body: schemas.UserCreate, db: Session = Depends(get_db), _admin: models.User = Depends(require_admin)):
    user = crud.create_user(db, body.name, body.email, get_password_hash(body.password), body.role)
    db.commit()
    return envelope(True, 201, "User registered successfully", data=schemas.UserOut.model_validate(user).model_dump(mode="json"))


@router.get("/me")
def me(user: models.User = Depends(get_current_user)):
    return envelope(True, 200, "Session is valid", data=schemas.UserOut.model_validate(user).model_dump(mode="json"))

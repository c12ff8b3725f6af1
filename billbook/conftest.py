import os

# the module-level engine is built at import time; keep it off any real database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from billbook import extraction, models
from billbook.auth import get_password_hash
from billbook.config import settings
from billbook.db import Base, get_db, make_engine
from billbook.main import app

ADMIN_EMAIL = "admin@billbook.test"
STAFF_EMAIL = "staff@billbook.test"
PASSWORD = "secret123"

REPLY = """```json
{
  "bill_number": "INV-9",
  "bill_date": "2024-02-01",
  "location": null,
  "total_billed_amount": "1,180.00",
  "supplier": {
    "name": "A2Z Buildwares",
    "gstin": "32EHSPK6796N1Z8",
    "address": null,
    "phone": {"office": null, "mobile": ["9496865950"]}
  },
  "party": null,
  "items": [{"name": "Cement", "hsn": 2523, "quantity": "10", "rate": 100, "amount": 1000}]
}
```"""


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeVisionModel:
    """Stands in for google.generativeai.GenerativeModel."""

    def __init__(self, reply="{}", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def generate_content(self, parts, request_options=None):
        self.calls.append((parts, request_options))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.reply)


@pytest.fixture()
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'billbook.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture()
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture()
def vision_model():
    return FakeVisionModel()


@pytest.fixture()
def api(session_factory, vision_model, upload_dir):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[extraction.get_vision_model] = lambda: vision_model
    yield app
    app.dependency_overrides.clear()


def _add_user(db, email, role):
    user = models.User(name=role.title(), email=email, hashed_password=get_password_hash(PASSWORD), role=role)
    db.add(user)
    db.commit()
    return user


def _login(api, email):
    client = TestClient(api)
    r = client.post("/api/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.text
    return client


@pytest.fixture()
def admin_client(api, db):
    _add_user(db, ADMIN_EMAIL, "ADMIN")
    return _login(api, ADMIN_EMAIL)


@pytest.fixture()
def staff_client(api, db):
    _add_user(db, STAFF_EMAIL, "STAFF")
    return _login(api, STAFF_EMAIL)


@pytest.fixture()
def anon_client(api):
    return TestClient(api)


def _contact(name, gstin, pincode, mobile):
    return {
        "name": name,
        "gstin": gstin,
        "address": {"street": "Main Road", "city": "Koratty", "state": "Kerala", "pincode": pincode},
        "phone": {"office": [], "mobile": [mobile]},
    }


@pytest.fixture()
def supplier_payload():
    return _contact("A2Z Buildwares", "32EHSPK6796N1Z8", "680308", "9496865950")


@pytest.fixture()
def party_payload():
    return _contact("Joy Mynatty", "32ABCDE1234F1Z5", "682030", "9876543210")


@pytest.fixture()
def bill_payload(supplier_payload, party_payload):
    """Factory for a complete, valid submission with a new supplier and party."""

    def make(**overrides):
        payload = {
            "bill_number": "INV-001",
            "bill_date": "2024-01-15",
            "location": "Kochi",
            "total_billed_amount": 1000,
            "payment_status": "unpaid",
            "newSupplier": supplier_payload,
            "newParty": party_payload,
            "items": [{"name": "Cement", "hsn": "2523", "quantity": 10, "rate": 100, "amount": 1000}],
        }
        payload.update(overrides)
        return {k: v for k, v in payload.items() if v is not None}

    return make

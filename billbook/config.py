# billbook/config.py
import os

from dotenv import load_dotenv

load_dotenv()


def _bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self):
        # The connection string MUST use "+psycopg" for PostgreSQL
        self.DATABASE_URL = os.getenv(
            "DATABASE_URL",
            "postgresql+psycopg://billbook:billbook@db:5432/billbook"
        )
        self.UPLOAD_DIR = os.getenv("UPLOAD_DIR", "/tmp/billbook")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.CORS_ORIGINS = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
            if o.strip()
        ]

        # Gemini vision model
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
        self.GEMINI_TIMEOUT = float(os.getenv("GEMINI_TIMEOUT", "60"))

        # Sessions
        self.SESSION_COOKIE = os.getenv("SESSION_COOKIE", "bill_session")
        self.SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "7"))
        self.COOKIE_SECURE = _bool(os.getenv("COOKIE_SECURE"), default=False)

        # Transaction bounds (milliseconds)
        self.TX_MAX_WAIT_MS = int(os.getenv("TX_MAX_WAIT_MS", "5000"))
        self.TX_TIMEOUT_MS = int(os.getenv("TX_TIMEOUT_MS", "10000"))

        # First admin (see seed_admin.py)
        self.ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@billbook.app")
        self.ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
        self.ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")


settings = Settings()

"""
Environment configuration for the Parent Portal API.

Values are read once at import. A `.env` file in the working directory is
honoured for local development.
"""
import os

from dotenv import load_dotenv

load_dotenv()

DEV_SECRET_KEY = "dev-secret-change-me"

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "parent_portal")

SECRET_KEY = os.getenv("SECRET_KEY", DEV_SECRET_KEY)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

PORT = int(os.getenv("PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORTAL_ENV = os.getenv("PORTAL_ENV", "dev")

DB_CONNECT_RETRY_SECONDS = float(os.getenv("DB_CONNECT_RETRY_SECONDS", 5))


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in {"prod", "production", "stage", "staging"}


def ensure_secure_config_on_startup() -> None:
    """Abort startup when a prod-like deployment still uses the dev signing key.

    Development and test environments stay permissive.
    """
    if not _is_prod_like(PORTAL_ENV):
        return
    if not SECRET_KEY or SECRET_KEY == DEV_SECRET_KEY:
        raise SystemExit(
            "Refusing to start: SECRET_KEY is unset or the development default in production."
        )
    if "*" in CORS_ORIGINS:
        raise SystemExit(
            "Refusing to start: CORS_ORIGINS must list explicit origins in production."
        )

"""
MongoDB connection management and document helpers.

Collections: user, student, homework, message. The module-level `db` handle is
set once by init_db() at startup; routes receive it through the get_db()
dependency so tests can substitute an in-memory database.
"""
import time
from datetime import date, datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import DATABASE_NAME, DATABASE_URL, DB_CONNECT_RETRY_SECONDS
from errors import ServerError, ValidationError
from logging_config import get_logger, log_with_context

logger = get_logger("db")

USERS = "user"
STUDENTS = "student"
HOMEWORK = "homework"
MESSAGES = "message"

client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect_with_retry(url: str = DATABASE_URL, delay: float = DB_CONNECT_RETRY_SECONDS,
                       sleep=time.sleep) -> MongoClient:
    """Connect and ping, retrying every `delay` seconds until the server answers."""
    attempt = 0
    while True:
        attempt += 1
        mongo = MongoClient(url, serverSelectionTimeoutMS=5000, tz_aware=True)
        try:
            mongo.admin.command("ping")
        except PyMongoError as exc:
            mongo.close()
            log_with_context(logger, "WARNING",
                             f"Database connection failed, retrying in {delay}s",
                             extra_data={"attempt": attempt, "error": str(exc)[:200]})
            sleep(delay)
            continue
        log_with_context(logger, "INFO", "Database is connected",
                         extra_data={"attempt": attempt})
        return mongo


def ensure_indexes(database: Database) -> None:
    database[USERS].create_index("email", unique=True)
    database[STUDENTS].create_index("roll_number", unique=True)
    database[STUDENTS].create_index("parent_id")
    database[STUDENTS].create_index([("class_name", ASCENDING), ("section", ASCENDING)])
    database[HOMEWORK].create_index([("class_name", ASCENDING), ("section", ASCENDING)])
    database[MESSAGES].create_index("sender")
    database[MESSAGES].create_index("receiver")


def init_db() -> Database:
    """Open the process-wide connection. No-op when a handle is already set."""
    global client, db
    if db is not None:
        return db
    client = connect_with_retry()
    db = client[DATABASE_NAME]
    ensure_indexes(db)
    return db


def close_db() -> None:
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def get_db() -> Database:
    """FastAPI dependency returning the active database handle."""
    if db is None:
        raise ServerError("Database not configured")
    return db


# ----------------------- Document helpers -----------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}")


def _isoformat(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def serialize(value):
    """Make a Mongo document JSON-friendly: `_id` -> `id`, ObjectId -> str, datetimes -> ISO."""
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            out["id" if key == "_id" else key] = serialize(item)
        return out
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    return _isoformat(value)

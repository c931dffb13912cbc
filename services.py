"""
Role-scoped data access for users, students, homework and messages.

Every function takes the database handle first and raises a PortalError
subclass on failure; none of them knows about HTTP.
"""
from datetime import datetime, time, timezone

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from conversations import summarize_conversations
from database import (
    HOMEWORK, MESSAGES, STUDENTS, USERS,
    parse_object_id, serialize, utcnow,
)
from errors import AuthorizationError, NotFoundError, ValidationError
from logging_config import get_logger, log_with_context
from schemas import Attendance, HomeworkCreate, Role, StudentCreate
from security import (
    Action, Identity, Resource, ACCESS_DENIED,
    create_access_token, get_password_hash, is_allowed, verify_password,
)

logger = get_logger("portal")
auth_logger = get_logger("auth")

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]
OLDEST_FIRST = [("created_at", ASCENDING), ("_id", ASCENDING)]


def _public_user(doc: dict) -> dict:
    doc = dict(doc)
    doc.pop("password_hash", None)
    return serialize(doc)


def _user_refs(db: Database, ids, fields=("name", "role")) -> dict:
    """Map user ObjectIds to {id, <fields>} for display; unknown ids resolve to None."""
    ids = list({i for i in ids if i is not None})
    if not ids:
        return {}
    projection = {f: 1 for f in fields}
    refs = {}
    for doc in db[USERS].find({"_id": {"$in": ids}}, projection):
        ref = {"id": str(doc["_id"])}
        ref.update({f: doc.get(f) for f in fields})
        refs[doc["_id"]] = ref
    return refs


def _ref_or_id(refs: dict, oid) -> dict:
    return refs.get(oid) or {"id": str(oid) if oid else None, "name": None}


# ----------------------- Auth -----------------------

def _auth_payload(user: dict) -> dict:
    return {
        "token": create_access_token(user),
        "user": {
            "id": str(user["_id"]),
            "name": user["name"],
            "email": user["email"],
            "role": user["role"],
        },
    }


def register_user(db: Database, name: str, email: str, password: str, phone: str) -> dict:
    """Create a parent account and return {token, user}. Self-registration is parent-only."""
    if db[USERS].find_one({"email": email}):
        raise ValidationError("User already exists")
    now = utcnow()
    doc = {
        "name": name,
        "email": email,
        "password_hash": get_password_hash(password),
        "phone": phone,
        "role": Role.PARENT.value,
        "created_at": now,
        "updated_at": now,
    }
    try:
        res = db[USERS].insert_one(doc)
    except DuplicateKeyError:
        raise ValidationError("User already exists")
    doc["_id"] = res.inserted_id
    log_with_context(auth_logger, "INFO", "User registered",
                     context={"user_id": str(res.inserted_id)},
                     extra_data={"role": doc["role"]})
    return _auth_payload(doc)


def authenticate_user(db: Database, email: str, password: str) -> dict:
    user = db[USERS].find_one({"email": email})
    if not user or not verify_password(password, user.get("password_hash", "")):
        log_with_context(auth_logger, "WARNING", "Login failed",
                         extra_data={"known_email": user is not None})
        raise ValidationError("Invalid credentials")
    log_with_context(auth_logger, "INFO", "User logged in",
                     context={"user_id": str(user["_id"])})
    return _auth_payload(user)


# ----------------------- Students -----------------------

def list_students_for_parent(db: Database, parent_id: str) -> list:
    oid = parse_object_id(parent_id, "parent ID")
    docs = db[STUDENTS].find({"parent_id": oid}).sort("roll_number", ASCENDING)
    return [serialize(d) for d in docs]


def list_students_for_class_section(db: Database, class_name: str, section: str) -> list:
    if not class_name or not section:
        raise ValidationError("Class and section are required")
    docs = db[STUDENTS].find({"class_name": class_name, "section": section}).sort("roll_number", ASCENDING)
    return [serialize(d) for d in docs]


def list_students(db: Database, identity: Identity, class_name: str = None,
                  section: str = None, parent_id: str = None) -> list:
    """Parents always get their own children; staff may filter by class+section or parent."""
    if identity.role == Role.PARENT:
        return list_students_for_parent(db, identity.user_id)
    if class_name or section:
        return list_students_for_class_section(db, class_name, section)
    if parent_id:
        return list_students_for_parent(db, parent_id)
    return [serialize(d) for d in db[STUDENTS].find({}).sort("roll_number", ASCENDING)]


def get_student(db: Database, student_id: str, identity: Identity) -> dict:
    doc = db[STUDENTS].find_one({"_id": parse_object_id(student_id)})
    if not doc:
        raise NotFoundError("Student not found")
    if identity.role == Role.PARENT and str(doc.get("parent_id")) != identity.user_id:
        raise AuthorizationError("Unauthorized access")
    return serialize(doc)


def create_student(db: Database, data: StudentCreate) -> dict:
    if db[STUDENTS].find_one({"roll_number": data.roll_number}):
        raise ValidationError("Student with this roll number already exists")
    parent_oid = parse_object_id(data.parent_id, "parent ID")
    if not db[USERS].find_one({"_id": parent_oid, "role": Role.PARENT.value}):
        raise ValidationError("Parent not found")

    doc = {
        "name": data.name,
        "roll_number": data.roll_number,
        "class_name": data.class_name,
        "section": data.section,
        "parent_id": parent_oid,
        "attendance": Attendance().model_dump(),
        "created_at": utcnow(),
    }
    try:
        res = db[STUDENTS].insert_one(doc)
    except DuplicateKeyError:
        raise ValidationError("Student with this roll number already exists")
    doc["_id"] = res.inserted_id
    log_with_context(logger, "INFO", "Student created",
                     context={"student_id": str(res.inserted_id), "parent_id": data.parent_id})
    return serialize(doc)


def update_attendance(db: Database, student_id: str, present: int, absent: int) -> dict:
    """Overwrite the counters; total is always recomputed as present + absent."""
    if present < 0 or absent < 0:
        raise ValidationError("Attendance counts must be non-negative")
    oid = parse_object_id(student_id)
    attendance = Attendance(present=present, absent=absent, total=present + absent).model_dump()
    doc = db[STUDENTS].find_one_and_update(
        {"_id": oid},
        {"$set": {"attendance": attendance, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Student not found")
    log_with_context(logger, "INFO", "Attendance updated",
                     context={"student_id": student_id}, extra_data=attendance)
    return serialize(doc)


# ----------------------- Homework -----------------------

def _with_uploader(db: Database, docs: list) -> list:
    refs = _user_refs(db, [d.get("uploaded_by") for d in docs], fields=("name",))
    out = []
    for d in docs:
        d = dict(d)
        d["uploaded_by"] = _ref_or_id(refs, d.get("uploaded_by"))
        out.append(serialize(d))
    return out


def list_homework(db: Database, class_name: str, section: str) -> list:
    if not class_name or not section:
        raise ValidationError("Class and section are required")
    docs = list(db[HOMEWORK].find({"class_name": class_name, "section": section}).sort(NEWEST_FIRST))
    return _with_uploader(db, docs)


def create_homework(db: Database, data: HomeworkCreate, identity: Identity) -> dict:
    if not is_allowed(identity.role, Resource.HOMEWORK, Action.CREATE):
        raise AuthorizationError(ACCESS_DENIED)
    doc = {
        "title": data.title,
        "description": data.description,
        "class_name": data.class_name,
        "section": data.section,
        "subject": data.subject,
        "due_date": datetime.combine(data.due_date, time.min, tzinfo=timezone.utc),
        "uploaded_by": parse_object_id(identity.user_id, "user ID"),
        "attachment_url": data.attachment_url,
        "created_at": utcnow(),
    }
    res = db[HOMEWORK].insert_one(doc)
    doc["_id"] = res.inserted_id
    log_with_context(logger, "INFO", "Homework created",
                     context={"homework_id": str(res.inserted_id), "user_id": identity.user_id},
                     extra_data={"class": data.class_name, "section": data.section})
    return _with_uploader(db, [doc])[0]


# ----------------------- Messages -----------------------

def _with_parties(db: Database, docs: list) -> list:
    ids = [d.get("sender") for d in docs] + [d.get("receiver") for d in docs]
    refs = _user_refs(db, ids)
    out = []
    for d in docs:
        d = dict(d)
        d["sender"] = _ref_or_id(refs, d.get("sender"))
        d["receiver"] = _ref_or_id(refs, d.get("receiver"))
        out.append(serialize(d))
    return out


def list_messages_for_user(db: Database, user_id: str) -> list:
    oid = parse_object_id(user_id, "user ID")
    docs = list(db[MESSAGES].find({"$or": [{"sender": oid}, {"receiver": oid}]}).sort(NEWEST_FIRST))
    return _with_parties(db, docs)


def list_conversation(db: Database, user_a: str, user_b: str) -> list:
    a = parse_object_id(user_a, "user ID")
    b = parse_object_id(user_b, "user ID")
    docs = list(db[MESSAGES].find({
        "$or": [
            {"sender": a, "receiver": b},
            {"sender": b, "receiver": a},
        ]
    }).sort(OLDEST_FIRST))
    return _with_parties(db, docs)


def list_conversation_summaries(db: Database, user_id: str) -> list:
    messages = list_messages_for_user(db, user_id)
    return [s.model_dump() for s in summarize_conversations(messages, user_id)]


def send_message(db: Database, sender_id: str, receiver_id: str, content: str) -> dict:
    sender = parse_object_id(sender_id, "user ID")
    receiver = parse_object_id(receiver_id, "receiver ID")
    content = (content or "").strip()
    if not content:
        raise ValidationError("Receiver ID and content are required")
    if sender == receiver:
        raise ValidationError("Cannot send a message to yourself")
    if not db[USERS].find_one({"_id": receiver}, {"_id": 1}):
        raise NotFoundError("Receiver not found")

    doc = {
        "sender": sender,
        "receiver": receiver,
        "content": content,
        "is_read": False,
        "created_at": utcnow(),
    }
    res = db[MESSAGES].insert_one(doc)
    doc["_id"] = res.inserted_id
    log_with_context(logger, "INFO", "Message sent",
                     context={"message_id": str(res.inserted_id), "user_id": sender_id},
                     extra_data={"receiver_id": receiver_id})
    return _with_parties(db, [doc])[0]


def mark_message_read(db: Database, message_id: str, requester_id: str) -> dict:
    """Only the receiver may mark a message read; repeating the call is harmless."""
    oid = parse_object_id(message_id, "message ID")
    doc = db[MESSAGES].find_one({"_id": oid})
    if not doc:
        raise NotFoundError("Message not found")
    if str(doc.get("receiver")) != requester_id:
        raise AuthorizationError("Unauthorized to mark this message as read")
    if not doc.get("is_read"):
        db[MESSAGES].update_one({"_id": oid}, {"$set": {"is_read": True}})
        doc["is_read"] = True
        log_with_context(logger, "INFO", "Message marked read",
                         context={"message_id": message_id, "user_id": requester_id})
    return _with_parties(db, [doc])[0]


# ----------------------- Users -----------------------

def _check_self_or_admin(identity: Identity, user_id: str) -> None:
    if identity.user_id != user_id and identity.role != Role.ADMIN:
        raise AuthorizationError("Unauthorized")


def list_available_users(db: Database, excluding_user_id: str) -> list:
    oid = parse_object_id(excluding_user_id, "user ID")
    docs = db[USERS].find({"_id": {"$ne": oid}}, {"name": 1, "role": 1}).sort("name", ASCENDING)
    return [serialize(d) for d in docs]


def get_user(db: Database, user_id: str) -> dict:
    doc = db[USERS].find_one({"_id": parse_object_id(user_id)}, {"password_hash": 0})
    if not doc:
        raise NotFoundError("User not found")
    return _public_user(doc)


def update_profile(db: Database, user_id: str, fields: dict, identity: Identity) -> dict:
    _check_self_or_admin(identity, user_id)
    oid = parse_object_id(user_id)
    updates = {k: v for k, v in fields.items() if k in ("name", "email", "phone") and v is not None}
    if not updates:
        raise ValidationError("No fields to update")
    if "email" in updates and db[USERS].find_one({"email": updates["email"], "_id": {"$ne": oid}}):
        raise ValidationError("Email already in use")

    updates["updated_at"] = utcnow()
    try:
        doc = db[USERS].find_one_and_update(
            {"_id": oid},
            {"$set": updates},
            projection={"password_hash": 0},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ValidationError("Email already in use")
    if not doc:
        raise NotFoundError("User not found")
    log_with_context(logger, "INFO", "Profile updated",
                     context={"user_id": user_id, "actor_id": identity.user_id},
                     extra_data={"fields": sorted(k for k in updates if k != "updated_at")})
    return _public_user(doc)


def update_password(db: Database, user_id: str, current_password: str, new_password: str,
                    identity: Identity) -> dict:
    _check_self_or_admin(identity, user_id)
    oid = parse_object_id(user_id)
    user = db[USERS].find_one({"_id": oid})
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(current_password, user.get("password_hash", "")):
        raise ValidationError("Current password is incorrect")
    db[USERS].update_one(
        {"_id": oid},
        {"$set": {"password_hash": get_password_hash(new_password), "updated_at": utcnow()}},
    )
    log_with_context(auth_logger, "INFO", "Password updated",
                     context={"user_id": user_id, "actor_id": identity.user_id})
    return {"message": "Password updated successfully"}

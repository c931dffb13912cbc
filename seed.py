"""
Reset the database to a small demo data set.

Usage:
    python seed.py

Wipes the user, student, homework and message collections, then creates one
admin, one teacher and one parent (password "password" for all), two students,
two homework assignments and a short message exchange.
"""
from datetime import datetime, time, timedelta, timezone

from pymongo.database import Database

import database
from database import HOMEWORK, MESSAGES, STUDENTS, USERS, utcnow
from logging_config import get_logger, log_with_context, setup_logging
from schemas import Role
from security import get_password_hash

logger = get_logger("db")

DEMO_PASSWORD = "password"


def _due_in(days: int) -> datetime:
    day = (utcnow() + timedelta(days=days)).date()
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def seed(db: Database) -> dict:
    """Replace all portal data with the demo set; returns the created ids by name."""
    for name in (USERS, STUDENTS, HOMEWORK, MESSAGES):
        db[name].delete_many({})

    password_hash = get_password_hash(DEMO_PASSWORD)
    now = utcnow()
    users = {}
    for key, name, email, phone, role in (
        ("admin", "Admin User", "admin@example.com", "5550100000", Role.ADMIN),
        ("teacher", "Mary Teacher", "teacher@example.com", "5550200000", Role.TEACHER),
        ("parent", "John Parent", "parent@example.com", "5550300000", Role.PARENT),
    ):
        res = db[USERS].insert_one({
            "name": name, "email": email, "password_hash": password_hash,
            "phone": phone, "role": role.value, "created_at": now, "updated_at": now,
        })
        users[key] = res.inserted_id

    students = {}
    for key, name, roll, class_name, section, present, absent in (
        ("alex", "Alex Smith", "101", "10", "A", 42, 3),
        ("emma", "Emma Smith", "102", "8", "B", 40, 5),
    ):
        res = db[STUDENTS].insert_one({
            "name": name, "roll_number": roll, "class_name": class_name, "section": section,
            "parent_id": users["parent"],
            "attendance": {"present": present, "absent": absent, "total": present + absent},
            "created_at": now,
        })
        students[key] = res.inserted_id

    db[HOMEWORK].insert_many([
        {
            "title": "Math Assignment",
            "description": "Complete problems 1-20 from Chapter 5",
            "class_name": "10", "section": "A", "subject": "Mathematics",
            "due_date": _due_in(7), "uploaded_by": users["teacher"],
            "attachment_url": None, "created_at": now,
        },
        {
            "title": "Science Project",
            "description": "Prepare a presentation on renewable energy",
            "class_name": "10", "section": "A", "subject": "Science",
            "due_date": _due_in(14), "uploaded_by": users["teacher"],
            "attachment_url": None, "created_at": now,
        },
    ])

    db[MESSAGES].insert_many([
        {
            "sender": users["teacher"], "receiver": users["parent"],
            "content": "Hello! This is about your child's progress.",
            "is_read": True, "created_at": now - timedelta(hours=2),
        },
        {
            "sender": users["parent"], "receiver": users["teacher"],
            "content": "Thank you for letting me know. Can we discuss further?",
            "is_read": False, "created_at": now - timedelta(hours=1),
        },
    ])

    log_with_context(logger, "INFO", "Database seeded",
                     extra_data={"users": len(users), "students": len(students)})
    return {"users": users, "students": students}


if __name__ == "__main__":
    setup_logging()
    seed(database.init_db())
    print(f"Test accounts (password: {DEMO_PASSWORD}):")
    print("  parent@example.com  teacher@example.com  admin@example.com")
    database.close_db()

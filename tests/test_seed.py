import mongomock

import services
from database import HOMEWORK, MESSAGES, STUDENTS, USERS, ensure_indexes
from seed import DEMO_PASSWORD, seed


def test_seed_creates_demo_data_and_is_repeatable():
    db = mongomock.MongoClient(tz_aware=True)["seed_test"]
    ensure_indexes(db)

    seed(db)
    ids = seed(db)

    assert db[USERS].count_documents({}) == 3
    assert db[STUDENTS].count_documents({"parent_id": ids["users"]["parent"]}) == 2
    assert db[HOMEWORK].count_documents({"class_name": "10", "section": "A"}) == 2
    assert db[MESSAGES].count_documents({}) == 2
    for student in db[STUDENTS].find():
        attendance = student["attendance"]
        assert attendance["total"] == attendance["present"] + attendance["absent"]

    result = services.authenticate_user(db, "parent@example.com", DEMO_PASSWORD)
    assert result["user"]["role"] == "parent"

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ALLOWED_EMAIL_DOMAIN", "@iiitkottayam.ac.in")
os.environ.pop("EMAIL_USER", None)

from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from campuswheels.database import ensure_indexes, get_db, USERS
from campuswheels.main import app
from campuswheels.models import RideCreate
from campuswheels.lifecycle import create_ride
from campuswheels.utils import create_access_token, get_password_hash, now_iso

PASSWORD = "correct-horse-battery"


@pytest.fixture
def db():
    database = mongomock.MongoClient().campus_wheels_test
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Capture outgoing mail instead of talking to SMTP."""
    sent = []

    def fake_send_otp_email(email, otp):
        sent.append({"kind": "otp", "to": email, "otp": otp})
        return True

    def fake_send_sos_email(details):
        sent.append({"kind": "sos", "details": details})
        return True

    monkeypatch.setattr("campuswheels.email_verification.send_otp_email", fake_send_otp_email)
    monkeypatch.setattr("campuswheels.sos.send_sos_email", fake_send_sos_email)
    return sent


@pytest.fixture
def make_user(db):
    password_hash = get_password_hash(PASSWORD)
    counter = {"n": 0}

    def factory(username=None, role="user", is_banned=False):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        user = {
            "username": username,
            "email": f"{username}@iiitkottayam.ac.in",
            "password": password_hash,
            "phone_number": None,
            "gender": None,
            "bio": None,
            "profile_picture": None,
            "wallet_address": None,
            "role": role,
            "is_active": True,
            "is_banned": is_banned,
            "cancellation_count": 0,
            "rides_left_count": 0,
            "rides_cancelled_count": 0,
            "created_at": now_iso(),
            "updated_at": now_iso()
        }
        user["_id"] = db[USERS].insert_one(user).inserted_id
        user["id"] = str(user["_id"])
        return user

    return factory


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'user_id': user['id']})}"}


def ride_payload(**overrides):
    payload = {
        "start_location": "IIIT Kottayam Main Gate",
        "end_location": "Kottayam Railway Station",
        "ride_date_time": (datetime.now(timezone.utc) + timedelta(days=1)).replace(microsecond=0).isoformat(),
        "total_seats": 2,
        "price_per_seat": 50,
        "tags": ["Station", "luggage"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_ride(db):
    def factory(driver, **overrides):
        return create_ride(db, driver, RideCreate(**ride_payload(**overrides)))
    return factory


PASS_THROUGH = object()


class InterceptedUsers:
    def __init__(self, users, answer):
        self._users = users
        self._answer = answer

    def find_one(self, query=None, *args, **kwargs):
        result = self._answer(query, *args, **kwargs)
        if result is PASS_THROUGH:
            return self._users.find_one(query, *args, **kwargs)
        return result

    def __getattr__(self, name):
        return getattr(self._users, name)


class InterceptedDB:
    """Database handle whose users.find_one can be answered by the test.

    ``answer(query, *args, **kwargs)`` returns a document, None, or
    PASS_THROUGH to read the real collection. Used to replay what a
    concurrent request would have read.
    """

    def __init__(self, db, answer):
        self._db = db
        self._answer = answer

    def __getitem__(self, name):
        collection = self._db[name]
        if name == USERS:
            return InterceptedUsers(collection, self._answer)
        return collection

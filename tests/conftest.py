import itertools
from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import factory
from config import Settings
from database import ensure_indexes, get_db
from email_service import EmailDeliveryError, get_mailer
from main import create_app
from resources import TOURS
from schemas import User

# keep bcrypt cheap under test
auth.pwd_context.update(bcrypt__rounds=4)

PASSWORD = "test-pass-1234"

_counter = itertools.count(1)


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, message):
        if self.fail:
            raise EmailDeliveryError("SMTP server unavailable")
        self.sent.append({"to": to, "subject": subject, "message": message})


@pytest.fixture
def settings():
    return Settings(env="development", jwt_secret="test-secret", rate_limit_max=10_000)


@pytest.fixture
def mongo_db():
    db = mongomock.MongoClient()["natours_test"]
    ensure_indexes(db)
    return db


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(settings, mongo_db, mailer):
    app = create_app(settings)
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(mongo_db):
    def _make(role="user", password=PASSWORD, email=None, **extra):
        n = next(_counter)
        doc = User(
            name=extra.pop("name", f"Test {role} {n}"),
            email=email or f"{role}{n}@example.com",
            password=auth.hash_password(password),
            role=role,
            **extra,
        ).to_document()
        doc["__v"] = 0
        doc["_id"] = mongo_db["users"].insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def auth_header(settings):
    def _header(user, issued_at=None):
        token = auth.sign_token(user["_id"], settings, issued_at=issued_at)
        return {"Authorization": f"Bearer {token}"}

    return _header


def tour_payload(**overrides):
    n = next(_counter)
    payload = {
        "name": f"The Test Tour {n}",
        "duration": 7,
        "maxGroupSize": 10,
        "difficulty": "easy",
        "price": 500,
        "summary": "A tour used in tests",
        "imageCover": "cover.jpg",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_tour(mongo_db):
    base_time = datetime(2024, 1, 1)

    def _make(minutes=0, **overrides):
        overrides.setdefault("createdAt", base_time + timedelta(minutes=minutes))
        return factory.create(mongo_db, TOURS, tour_payload(**overrides))

    return _make


@pytest.fixture
def new_tour_payload():
    return tour_payload

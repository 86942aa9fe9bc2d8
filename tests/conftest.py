import os
import tempfile

# Settings are read at import time, so the test environment must be in place first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEOCODE_ENABLED"] = "false"
os.environ["REDIS_URL"] = "redis://localhost:6399/0"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["GROQ_API_KEY"] = ""
os.environ["CLOUDINARY_CLOUD_NAME"] = ""
os.environ["FIREBASE_API_KEY"] = ""
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="civicsense-uploads-")

import pytest
from fastapi.testclient import TestClient

from civicsense.db.database import Base, SessionLocal, engine
from civicsense.db.models import User
from civicsense.dependencies import get_image_store, get_classifier, get_geocoder
from civicsense.main import app
from civicsense.services.auth_service import auth_service
from civicsense.services.issue_service import issue_service
from civicsense.services.storage_service import ImageStore, ISSUE_FOLDER


class FakeImageStore(ImageStore):
    def __init__(self):
        self.uploads = []

    async def upload(self, content, filename, folder=ISSUE_FOLDER):
        self.validate(content, filename)
        self.uploads.append((filename, folder))
        return f"https://images.test/{folder}/{len(self.uploads)}-{filename}"


class FakeClassifier:
    configured = True
    model = "fake-vision"

    def __init__(self, category="pothole", confidence=88):
        self.category = category
        self.confidence = confidence
        self.calls = []

    def categories(self):
        return []

    async def classify(self, image_url=None, image_base64=None):
        self.calls.append(image_url or image_base64)
        return {
            "success": True,
            "category": self.category,
            "confidence": self.confidence,
            "severity": "high",
        }


class FakeGeocoder:
    def __init__(self, address="MG Road, Bangalore"):
        self.address = address
        self.calls = []

    def address_for(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        return self.address


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def client(image_store, classifier, geocoder):
    app.dependency_overrides[get_image_store] = lambda: image_store
    app.dependency_overrides[get_classifier] = lambda: classifier
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create users directly; password hashing only when a password is given"""
    counter = {"n": 0}

    def _make(role="citizen", department=None, password=None, name=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"User {n}",
            email=f"user{n}@example.com",
            password_hash=auth_service.hash_password(password) if password else None,
            role=role,
            department=department,
            **fields
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {auth_service.create_token(user)}"}

    return _headers


@pytest.fixture
def make_issue(db):
    def _make(reporter, category="pothole", description="Deep pothole near the bus stop",
              latitude=12.9716, longitude=77.5946, **fields):
        return issue_service.create(
            db=db,
            reporter=reporter,
            latitude=latitude,
            longitude=longitude,
            description=description,
            image_url="https://images.test/issue.jpg",
            category=category,
            **fields
        )

    return _make

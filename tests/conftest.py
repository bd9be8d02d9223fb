"""
Shared fixtures.

The environment is configured before any civic_reports import so the
settings object and the engine point at a throwaway SQLite file.
"""
import io
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="civic-reports-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["ENV"] = "test"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOCAL_UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["JWT_SECRET_KEY"] = "test_secret_for_civic_reports_that_is_long_enough"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["DEDUP_POLICY"] = "category_radius"
os.environ["DEDUP_RADIUS_METERS"] = "50"

from datetime import datetime

import pytest
from PIL import Image

from civic_reports.models.report import Report
from civic_reports.utils.db import Base, SessionLocal, create_tables, engine


@pytest.fixture(autouse=True)
def _tables():
    create_tables()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_png(color=(200, 30, 30), size=(32, 32)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def make_report(db):
    """Insert a report row directly, bypassing the lifecycle service."""
    def _make(**overrides):
        image_urls = overrides.pop("image_urls", ["image1.jpg"])
        image_hashes = overrides.pop("image_hashes", ["0123456789abcdef"])
        fields = {
            "title": "Test Report",
            "description": "Test description",
            "latitude": 28.6139,
            "longitude": 77.2090,
            "category": "ROAD_ISSUE",
            "status": "PENDING",
            "creator_id": "user-123",
            "created_at": datetime(2025, 1, 1, 0, 0, 0),
        }
        fields.update(overrides)
        report = Report(**fields)
        report.image_urls = image_urls
        report.image_hashes = image_hashes
        db.add(report)
        db.commit()
        db.refresh(report)
        return report

    return _make


class RecordingStorage:
    """In-memory storage double that hands out predictable URLs."""

    def __init__(self):
        self.uploads = []

    def upload(self, image_data: bytes, content_type: str = "image/jpeg", folder: str = "reports") -> str:
        self.uploads.append((image_data, content_type, folder))
        return f"https://cdn.test/{folder}/image-{len(self.uploads)}.png"


@pytest.fixture
def storage():
    return RecordingStorage()

"""
Pytest configuration and fixtures for Abstract Submission Backend tests.
"""

import os
import tempfile
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["DATABASE_URL"] = f"sqlite:///{tempfile.mkdtemp(prefix='abstracts_test_')}/submissions.db"
os.environ["EMAIL_USER"] = "conference@example.com"
os.environ["EMAIL_PASS"] = "test-app-password"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["EDIT_DEADLINE"] = "2024-12-31"
os.environ["EDIT_VIEW"] = "json"

from abstract_submission_backend.database import DocumentDatabase, SubmissionStore
from abstract_submission_backend.main import app, get_submission_service
from abstract_submission_backend.notifications import NotificationDispatcher
from abstract_submission_backend.sequence import SequenceAllocator
from abstract_submission_backend.submission_service import SubmissionService

BEFORE_DEADLINE = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
AFTER_DEADLINE = datetime(2025, 1, 1, 0, 0, tzinfo=timezone.utc)


class RecordingTransport:
    """Mail transport that keeps sent messages in memory."""

    def __init__(self):
        self.sent = []
        self.failing_recipients = set()
        self.verify_error = None

    def send(self, sender, message):
        if message.to in self.failing_recipients:
            raise ConnectionRefusedError(f"connection refused for {message.to}")
        self.sent.append((sender, message))

    def verify(self):
        if self.verify_error is not None:
            raise self.verify_error

    def messages_to(self, recipient):
        return [message for _, message in self.sent if message.to == recipient]


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def database(tmp_path):
    return DocumentDatabase(tmp_path / "submissions.db")


@pytest.fixture
def store(database):
    return SubmissionStore(database)


@pytest.fixture
def allocator(database):
    return SequenceAllocator(database)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def dispatcher(transport):
    dispatcher = NotificationDispatcher(transport, sender="conference@example.com")
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def clock():
    return FakeClock(BEFORE_DEADLINE)


@pytest.fixture
def service(store, allocator, dispatcher, clock):
    return SubmissionService(
        store=store,
        allocator=allocator,
        dispatcher=dispatcher,
        admin_email="admin@example.com",
        edit_deadline="2024-12-31",
        clock=clock,
    )


@pytest.fixture
def client(service):
    """Create a test client whose service uses a fresh database per test."""
    app.dependency_overrides[get_submission_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def valid_submission():
    return {
        "submitterName": "A",
        "submitterEmail": "a@x.com",
        "abstractTitle": "T",
        "abstractType": "poster",
        "theme": "Innovation in Energy",
        "company": "C",
        "discipline": "D",
        "authorNames": "A",
        "abstractContent": "Lorem ipsum dolor sit amet.",
    }

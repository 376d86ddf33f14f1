"""Shared test fixtures and configuration.

Points the settings at a throwaway SQLite file and upload directory before
any tasktrack module is imported, and provides services wired to fakes.
"""

import os
import tempfile

_TMP_ROOT = tempfile.mkdtemp(prefix="tasktrack-tests-")

# Patch env vars BEFORE any tasktrack imports
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_ROOT}/test.db"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_ROOT, "public")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"
os.environ["MAIL_HOST"] = ""
os.environ["MAIL_USERNAME"] = ""
os.environ["MAIL_PASSWORD"] = ""

import pytest
from fastapi.testclient import TestClient

from tasktrack.main import app
from tasktrack.api.dependencies import get_auth_service
from tasktrack.core.database import Base, SessionLocal, engine
from tasktrack.core.errors import InvalidAssertion
from tasktrack.services.attachment_service import AttachmentService
from tasktrack.services.auth_service import AuthService
from tasktrack.services.task_service import TaskService
from tasktrack.storage.local_storage import AttachmentStorage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FakeVerifier:
    """Identity verifier returning canned claims keyed by assertion string."""

    def __init__(self):
        self.claims = {}

    def add(self, assertion, **claims):
        self.claims[assertion] = claims

    def verify(self, assertion):
        if assertion not in self.claims:
            raise InvalidAssertion()
        return dict(self.claims[assertion])


class FakeTransport:
    """Mail transport that records messages and can fail for chosen recipients."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self.on_send = None

    def send(self, message):
        if self.on_send is not None:
            self.on_send(message)
        if message["To"] in self.fail_for:
            raise OSError("connection refused")
        self.sent.append(message)


@pytest.fixture
def db():
    """Fresh tables for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    attachment_storage = AttachmentStorage(root=str(tmp_path / "public"))
    attachment_storage.ensure_directories()
    return attachment_storage


@pytest.fixture
def attachments(storage):
    return AttachmentService(storage)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def auth_svc(verifier, attachments):
    return AuthService(verifier=verifier, attachments=attachments)


@pytest.fixture
def task_svc(attachments):
    return TaskService(attachments)


@pytest.fixture
def make_user(db, auth_svc):
    """Register a user and return (token, user)."""
    def _make(email="alice@example.com", password="s3cret-pass", name="Alice"):
        return auth_svc.register(db, email, password, name)
    return _make


@pytest.fixture
def client(db, verifier):
    app.dependency_overrides[get_auth_service] = lambda: AuthService(verifier=verifier)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()

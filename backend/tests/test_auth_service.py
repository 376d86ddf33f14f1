"""Tests for AuthService - registration, login, Google sign-in, profile."""

import pytest
from sqlalchemy import event

from tasktrack.core.database import SessionLocal
from tasktrack.core.errors import (
    DuplicateIdentity,
    InvalidAssertion,
    InvalidCredentials,
    NotFound,
    UnsupportedMediaType,
    ValidationError,
)
from tasktrack.models.user import User
from tasktrack.services.attachment_service import IncomingFile

from conftest import PNG_BYTES


def png_upload():
    return IncomingFile(content=PNG_BYTES, content_type="image/png", size=len(PNG_BYTES))


class TestRegister:
    def test_token_authenticates_as_new_user(self, db, auth_svc):
        token, user = auth_svc.register(db, "alice@example.com", "pw-123456", "Alice")
        assert user.id is not None
        assert auth_svc.authenticate(token) == user.id

    def test_password_is_hashed(self, db, auth_svc):
        _, user = auth_svc.register(db, "alice@example.com", "pw-123456", "Alice")
        assert user.hashed_password != "pw-123456"
        assert user.has_password

    def test_email_is_normalized(self, db, auth_svc):
        _, user = auth_svc.register(db, "  Alice@Example.COM ", "pw-123456", "Alice")
        assert user.email == "alice@example.com"

    def test_duplicate_email_case_insensitive(self, db, auth_svc):
        auth_svc.register(db, "alice@example.com", "pw-123456", "Alice")
        with pytest.raises(DuplicateIdentity):
            auth_svc.register(db, "ALICE@example.com", "other-pass", "Alice 2")

    def test_reports_every_missing_field(self, db, auth_svc):
        with pytest.raises(ValidationError) as exc_info:
            auth_svc.register(db, "", "", " ")
        fields = {e["field"] for e in exc_info.value.errors}
        assert fields == {"email", "password", "name"}

    def test_invalid_email(self, db, auth_svc):
        with pytest.raises(ValidationError) as exc_info:
            auth_svc.register(db, "not-an-email", "pw-123456", "Alice")
        assert exc_info.value.errors[0]["field"] == "email"

    def test_with_avatar(self, db, auth_svc, storage):
        _, user = auth_svc.register(db, "alice@example.com", "pw-123456", "Alice", avatar=png_upload())
        assert user.avatar.startswith("/avatar/")
        assert storage.exists(user.avatar)

    def test_bad_avatar_creates_no_user(self, db, auth_svc):
        pdf = IncomingFile(content=b"%PDF-1.4", content_type="application/pdf", size=8)
        with pytest.raises(UnsupportedMediaType):
            auth_svc.register(db, "alice@example.com", "pw-123456", "Alice", avatar=pdf)
        assert db.query(User).count() == 0


class TestLogin:
    def test_login_success(self, db, auth_svc, make_user):
        _, registered = make_user()
        token, user = auth_svc.login(db, "Alice@example.com", "s3cret-pass")
        assert user.id == registered.id
        assert auth_svc.authenticate(token) == registered.id

    def test_wrong_password_and_unknown_email_look_identical(self, db, auth_svc, make_user):
        make_user()
        with pytest.raises(InvalidCredentials) as wrong_password:
            auth_svc.login(db, "alice@example.com", "nope")
        with pytest.raises(InvalidCredentials) as unknown_email:
            auth_svc.login(db, "bob@example.com", "s3cret-pass")
        assert wrong_password.value.detail == unknown_email.value.detail


class TestExternalSignIn:
    def test_first_sign_in_creates_password_less_user(self, db, auth_svc, verifier):
        verifier.add("tok-1", email="carol@example.com", name="Carol", picture="https://img/c.png", sub="g-1")
        token, user = auth_svc.external_sign_in(db, "tok-1")
        assert user.google_id == "g-1"
        assert user.hashed_password is None
        assert user.avatar == "https://img/c.png"
        assert auth_svc.authenticate(token) == user.id

    def test_repeat_sign_in_reuses_record(self, db, auth_svc, verifier):
        verifier.add("tok-1", email="carol@example.com", name="Carol", sub="g-1")
        _, first = auth_svc.external_sign_in(db, "tok-1")
        _, second = auth_svc.external_sign_in(db, "tok-1")
        assert first.id == second.id
        assert db.query(User).count() == 1

    def test_password_login_rejected_for_external_account(self, db, auth_svc, verifier):
        verifier.add("tok-1", email="carol@example.com", name="Carol", sub="g-1")
        auth_svc.external_sign_in(db, "tok-1")
        with pytest.raises(InvalidCredentials):
            auth_svc.login(db, "carol@example.com", "")

    def test_links_existing_password_account(self, db, auth_svc, verifier, make_user):
        _, registered = make_user()
        verifier.add("tok-a", email="alice@example.com", name="Alice G", sub="g-alice")
        _, user = auth_svc.external_sign_in(db, "tok-a")
        assert user.id == registered.id
        assert user.google_id == "g-alice"
        # Password path still works
        auth_svc.login(db, "alice@example.com", "s3cret-pass")

    def test_concurrent_first_sign_in_reuses_winner(self, db, auth_svc, verifier):
        verifier.add("tok-1", email="carol@example.com", name="Carol", sub="g-1")

        def competing_sign_in(session, flush_context, instances):
            # Another request creates the same account between our lookup and insert
            other = SessionLocal()
            try:
                other.add(User(email="carol@example.com", hashed_password=None, name="Carol", google_id="g-1"))
                other.commit()
            finally:
                other.close()

        event.listen(db, "before_flush", competing_sign_in, once=True)
        token, user = auth_svc.external_sign_in(db, "tok-1")

        assert db.query(User).count() == 1
        assert user.email == "carol@example.com"
        assert auth_svc.authenticate(token) == user.id

    def test_unverifiable_assertion(self, db, auth_svc):
        with pytest.raises(InvalidAssertion):
            auth_svc.external_sign_in(db, "forged")

    def test_unverified_email_rejected(self, db, auth_svc, verifier):
        verifier.add("tok-2", email="dave@example.com", email_verified=False, sub="g-2")
        with pytest.raises(InvalidAssertion):
            auth_svc.external_sign_in(db, "tok-2")


class TestUpdateProfile:
    def test_partial_name_update(self, db, auth_svc, make_user):
        _, user = make_user()
        updated = auth_svc.update_profile(db, user.id, name="Alice Liddell")
        assert updated.name == "Alice Liddell"
        assert updated.email == "alice@example.com"

    def test_no_fields_is_a_successful_no_op(self, db, auth_svc, make_user):
        _, user = make_user()
        updated = auth_svc.update_profile(db, user.id)
        assert updated.name == "Alice"

    def test_empty_name_rejected(self, db, auth_svc, make_user):
        _, user = make_user()
        with pytest.raises(ValidationError):
            auth_svc.update_profile(db, user.id, name="   ")

    def test_replacing_avatar_deletes_previous_file(self, db, auth_svc, storage, make_user):
        _, user = make_user()
        first = auth_svc.update_profile(db, user.id, avatar=png_upload()).avatar
        second = auth_svc.update_profile(db, user.id, avatar=png_upload()).avatar
        assert first != second
        assert not storage.exists(first)
        assert storage.exists(second)

    def test_unknown_user(self, db, auth_svc):
        with pytest.raises(NotFound):
            auth_svc.update_profile(db, 999, name="Ghost")

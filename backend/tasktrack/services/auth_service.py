"""
Session issuing: registration, password login, Google sign-in, token
authentication and profile updates.

Every successful sign-in path returns a (token, user) pair; the token is a
stateless JWT whose 'sub' claim is the user id.
"""

import logging
from typing import Optional, Protocol, Tuple
from email_validator import EmailNotValidError, validate_email
from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from tasktrack.core.config import settings
from tasktrack.core.errors import (
    DependencyUnavailable,
    DuplicateIdentity,
    InvalidAssertion,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    ValidationError,
)
from tasktrack.core.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from tasktrack.models.user import User
from tasktrack.services.attachment_service import AttachmentService, IncomingFile, attachment_service
from tasktrack.storage.local_storage import AVATAR_BUCKET

logger = logging.getLogger(__name__)


class IdentityVerifier(Protocol):
    """Verifies a third-party identity assertion and returns its claims."""

    def verify(self, assertion: str) -> dict: ...


class GoogleIdentityVerifier:
    """Checks a Google ID token's signature, issuer and audience"""

    def __init__(self, client_id: Optional[str]):
        self.client_id = client_id
        self._request = google_requests.Request()

    def verify(self, assertion: str) -> dict:
        if not self.client_id:
            raise DependencyUnavailable("Google sign-in is not configured")
        try:
            return id_token.verify_oauth2_token(assertion, self._request, self.client_id)
        except google_exceptions.TransportError as exc:
            # Could not fetch Google's signing certificates
            logger.error(f"Google certificate fetch failed: {exc}")
            raise DependencyUnavailable("Identity provider unreachable") from exc
        except (ValueError, google_exceptions.GoogleAuthError) as exc:
            raise InvalidAssertion() from exc


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def issue_token(user: User) -> str:
    return create_access_token(data={"sub": str(user.id)})


class AuthService:
    def __init__(
        self,
        verifier: IdentityVerifier,
        attachments: AttachmentService = attachment_service,
    ):
        self.verifier = verifier
        self.attachments = attachments

    def register(
        self,
        db: Session,
        email: str,
        password: str,
        name: str,
        avatar: Optional[IncomingFile] = None,
    ) -> Tuple[str, User]:
        """Register a new user; registration also logs the user in"""
        email = normalize_email(email)
        errors = []
        if not email:
            errors.append({"field": "email", "message": "Email is required"})
        else:
            try:
                validate_email(email, check_deliverability=False)
            except EmailNotValidError:
                errors.append({"field": "email", "message": "Email address is not valid"})
        if not password:
            errors.append({"field": "password", "message": "Password is required"})
        if not name or not name.strip():
            errors.append({"field": "name", "message": "Name is required"})
        if errors:
            raise ValidationError(errors)

        if db.query(User).filter(User.email == email).first():
            raise DuplicateIdentity()

        # Upload is validated and written only after input checks pass
        avatar_ref = self.attachments.persist(avatar, AVATAR_BUCKET)

        db_user = User(
            email=email,
            hashed_password=get_password_hash(password),
            name=name.strip(),
            avatar=avatar_ref,
        )
        try:
            db.add(db_user)
            db.commit()
            db.refresh(db_user)
        except IntegrityError:
            # Two concurrent registrations for the same email - the unique constraint wins
            db.rollback()
            self.attachments.discard(avatar_ref)
            raise DuplicateIdentity()
        except SQLAlchemyError as exc:
            db.rollback()
            self.attachments.discard(avatar_ref)
            logger.exception("Database error during registration")
            raise DependencyUnavailable("Database error occurred") from exc

        logger.info(f"Registered user {db_user.id}")
        return issue_token(db_user), db_user

    def login(self, db: Session, email: str, password: str) -> Tuple[str, User]:
        user = db.query(User).filter(User.email == normalize_email(email)).first()

        # Unknown email, wrong password and password-less accounts all look the same
        if not user or not verify_password(password or "", user.hashed_password):
            raise InvalidCredentials()

        return issue_token(user), user

    def external_sign_in(self, db: Session, assertion: str) -> Tuple[str, User]:
        """Sign in with a Google ID token, creating the user on first sight"""
        if not assertion:
            raise InvalidAssertion()

        claims = self.verifier.verify(assertion)
        email = normalize_email(claims.get("email"))
        if not email or claims.get("email_verified") is False:
            raise InvalidAssertion()

        subject = claims.get("sub")
        user = db.query(User).filter(User.email == email).first()
        try:
            if user is None:
                user = User(
                    email=email,
                    hashed_password=None,
                    name=claims.get("name") or email.split("@")[0],
                    avatar=claims.get("picture"),
                    google_id=subject,
                )
                db.add(user)
                db.commit()
                db.refresh(user)
                logger.info(f"Created user {user.id} from Google sign-in")
            elif subject and not user.google_id:
                # Existing password account signing in with Google for the first time
                user.google_id = subject
                db.commit()
                db.refresh(user)
        except IntegrityError:
            db.rollback()
            # A concurrent first sign-in for the same email committed first; reuse its record
            user = db.query(User).filter(User.email == email).first()
            if user is None:
                raise DuplicateIdentity()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Database error during Google sign-in")
            raise DependencyUnavailable("Database error occurred") from exc

        return issue_token(user), user

    @staticmethod
    def authenticate(token: Optional[str]) -> int:
        """Resolve a bearer token to a user id"""
        if not token:
            raise InvalidToken()

        payload = decode_access_token(token)
        if payload is None:
            raise InvalidToken()

        try:
            return int(payload.get("sub"))
        except (ValueError, TypeError):
            raise InvalidToken()

    def update_profile(
        self,
        db: Session,
        user_id: int,
        name: Optional[str] = None,
        avatar: Optional[IncomingFile] = None,
    ) -> User:
        """Partial profile update - omitted fields keep their values"""
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFound("User not found")

        if name is not None and not name.strip():
            raise ValidationError.single("name", "Name must not be empty")

        new_avatar = self.attachments.persist(avatar, AVATAR_BUCKET)
        old_avatar = user.avatar

        if name is not None:
            user.name = name.strip()
        if new_avatar is not None:
            user.avatar = new_avatar

        try:
            db.commit()
            db.refresh(user)
        except SQLAlchemyError as exc:
            db.rollback()
            self.attachments.discard(new_avatar)
            logger.exception("Database error during profile update")
            raise DependencyUnavailable("Database error occurred") from exc

        if new_avatar is not None and old_avatar and old_avatar != new_avatar:
            self.attachments.discard(old_avatar)

        return user


auth_service = AuthService(verifier=GoogleIdentityVerifier(settings.GOOGLE_CLIENT_ID))

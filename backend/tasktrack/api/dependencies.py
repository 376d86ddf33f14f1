from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from tasktrack.core.database import get_db
from tasktrack.core.errors import InvalidToken
from tasktrack.models.user import User
from tasktrack.services.auth_service import AuthService, auth_service
from tasktrack.services.task_service import TaskService, task_service

# OAuth2 password bearer scheme - extracts token from Authorization header
# tokenUrl tells FastAPI where to find the login endpoint for Swagger UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


def get_auth_service() -> AuthService:
    return auth_service


def get_task_service() -> TaskService:
    return task_service


async def get_current_user_id(
    token: str | None = Depends(oauth2_scheme),
    service: AuthService = Depends(get_auth_service),
) -> int:
    """Resolve the bearer token to a user id; raises InvalidToken (401) otherwise"""
    return service.authenticate(token)


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> User:
    """
    Load the authenticated user.

    A valid token for a user that no longer exists is treated like an
    invalid token.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise InvalidToken()
    return user

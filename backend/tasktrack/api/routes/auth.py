from typing import Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from tasktrack.api.dependencies import get_auth_service, get_current_user
from tasktrack.api.schemas import (
    AuthResponse,
    GoogleSignInRequest,
    LoginRequest,
    ProfileResponse,
    UserResponse,
)
from tasktrack.core.database import get_db
from tasktrack.models.user import User
from tasktrack.services.attachment_service import attachment_service
from tasktrack.services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    email: str = Form(...),
    password: str = Form(...),
    name: str = Form(...),
    photo: Optional[UploadFile] = File(None),
    service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db)
):
    """Register a new user with an optional avatar photo"""
    avatar = await attachment_service.read_upload(photo)
    # bcrypt hashing and database work run off the event loop
    token, user = await run_in_threadpool(service.register, db, email, password, name, avatar=avatar)
    return {"token": token, "user": user}


# Plain def routes are run in FastAPI's threadpool
@router.post("/login", response_model=AuthResponse)
def login(
    credentials: LoginRequest,
    service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db)
):
    """Login and get access token"""
    token, user = service.login(db, credentials.email, credentials.password)
    return {"token": token, "user": user}


@router.post("/google", response_model=AuthResponse)
def google_sign_in(
    body: GoogleSignInRequest,
    service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db)
):
    """Sign in or register with a Google ID token"""
    token, user = service.external_sign_in(db, body.token)
    return {"token": token, "user": user}


@router.put("/profile", response_model=ProfileResponse)
async def update_profile(
    name: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
    db: Session = Depends(get_db)
):
    """Update display name and/or avatar"""
    avatar = await attachment_service.read_upload(photo)
    user = await run_in_threadpool(service.update_profile, db, current_user.id, name=name, avatar=avatar)
    return {"user": user}


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return current_user

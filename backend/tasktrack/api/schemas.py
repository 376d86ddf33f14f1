from datetime import date, datetime
from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_serializer
from pydantic.alias_generators import to_camel

# Responses use camelCase keys (dueDate, createdAt) for the browser client
camel_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    avatar: Optional[str] = None
    has_password: bool

    model_config = camel_config


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserResponse

    model_config = camel_config


class ProfileResponse(BaseModel):
    user: UserResponse


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class GoogleSignInRequest(BaseModel):
    # The Google ID token issued to the browser
    token: str = Field(validation_alias=AliasChoices("token", "identityAssertion", "credential"))


class TaskResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: Optional[str]
    due_date: Optional[date]
    priority: str
    status: str
    image: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = camel_config

    @field_serializer('created_at', 'updated_at')
    def serialize_timestamps(self, value: Optional[datetime], _info):
        return value.isoformat() if value else None


class MessageResponse(BaseModel):
    message: str

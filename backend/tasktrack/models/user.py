from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from tasktrack.core.database import Base


class User(Base):
    """
    User model representing application users.

    Locally registered users carry a bcrypt hash; users created through
    Google sign-in have google_id set and no password hash.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Stored lower-cased so uniqueness is case-insensitive
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=True)
    name = Column(String, nullable=False)
    # Local attachment reference (/avatar/...) or an external picture URL
    avatar = Column(String, nullable=True)
    google_id = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def has_password(self) -> bool:
        return self.hashed_password is not None

from sqlalchemy import create_engine, text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from tasktrack.core.config import settings


def _connect_args(url: str) -> dict:
    # SQLite connections are shared between the request threadpool and the scheduler thread
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


# Create database engine - manages connection pool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    pool_pre_ping=True,
)

# autocommit=False: Changes require explicit commit (prevents accidental commits)
# autoflush=False: Don't auto-flush before queries
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all database models
Base = declarative_base()


def check_database_connection() -> None:
    """Run a trivial query so startup fails fast when the database is unreachable."""
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def get_db():
    """
    Dependency for getting database session.

    The session is automatically closed after the request completes (via finally block).
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always close session, even if request raises an exception
        db.close()

import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from sqlalchemy.exc import OperationalError
from tasktrack.core.config import settings
from tasktrack.core.database import engine, Base, check_database_connection
from tasktrack.core.errors import AppError, DependencyUnavailable
from tasktrack.core.scheduler import start_scheduler, stop_scheduler
from tasktrack.storage.local_storage import storage, AVATAR_BUCKET, TASK_IMAGE_BUCKET
from tasktrack.api.routes import auth, tasks
# Registers every table on Base.metadata before create_all
from tasktrack.models import notification, task, user  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage app lifecycle events.

    Startup: storage directories and database must be usable, otherwise the
    process exits instead of silently dropping uploads. Then create tables
    and start the background scheduler.
    Shutdown: Stop background scheduler
    """
    storage.ensure_directories()
    check_database_connection()
    # In production, use migrations (Alembic) instead of create_all
    Base.metadata.create_all(bind=engine)
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="TaskTrack API",
    description="Multi-user task tracking with due-date reminders",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware - allows frontend to make requests to backend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if isinstance(exc, DependencyUnavailable):
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}", exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(OperationalError)
async def database_error_handler(request: Request, exc: OperationalError):
    # Connectivity failures outside a commit (e.g. during a read) - the client may retry
    return await app_error_handler(request, DependencyUnavailable("Database unavailable"))


# All routes are prefixed with /api for consistency
app.include_router(auth.router, prefix="/api")
app.include_router(tasks.router, prefix="/api")

# Uploaded images are served from the same paths stored on the records
app.mount(f"/{AVATAR_BUCKET}", StaticFiles(directory=storage.bucket_dir(AVATAR_BUCKET), check_dir=False), name="avatar")
app.mount(f"/{TASK_IMAGE_BUCKET}", StaticFiles(directory=storage.bucket_dir(TASK_IMAGE_BUCKET), check_dir=False), name="uploads")


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {"message": "TaskTrack API", "version": "1.0.0"}


@app.get("/health")
@app.get("/api/health")
async def health():
    """Health check endpoint - used by monitoring/deployment tools"""
    return {"status": "ok"}

from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from tasktrack.api.dependencies import get_current_user_id, get_task_service
from tasktrack.api.schemas import MessageResponse, TaskResponse
from tasktrack.core.database import get_db
from tasktrack.services.attachment_service import attachment_service
from tasktrack.services.task_service import TaskService

router = APIRouter(prefix="/tasks", tags=["tasks"])

# Service field name -> form key sent by the client
FORM_KEYS = {
    "title": "title",
    "description": "description",
    "due_date": "dueDate",
    "priority": "priority",
    "status": "status",
}


@router.get("", response_model=List[TaskResponse])
def list_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    q: Optional[str] = Query(None, description="Search in title and description"),
    user_id: int = Depends(get_current_user_id),
    service: TaskService = Depends(get_task_service),
    db: Session = Depends(get_db)
):
    """List the current user's tasks with optional filtering, search and sorting"""
    return service.list_tasks(
        db, user_id, status=status_filter, priority=priority, search=q, sort_by=sort_by
    )


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    due_date: Optional[str] = Form(None, alias="dueDate"),
    priority: Optional[str] = Form(None),
    status_value: Optional[str] = Form(None, alias="status"),
    image: Optional[UploadFile] = File(None),
    user_id: int = Depends(get_current_user_id),
    service: TaskService = Depends(get_task_service),
    db: Session = Depends(get_db)
):
    """Create a task with an optional image"""
    incoming = await attachment_service.read_upload(image)
    # Database and disk work runs off the event loop
    return await run_in_threadpool(
        service.create,
        db,
        user_id,
        title=title,
        description=description,
        due_date=due_date or None,
        priority=priority or None,
        status=status_value or None,
        image=incoming,
    )


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int,
    user_id: int = Depends(get_current_user_id),
    service: TaskService = Depends(get_task_service),
    db: Session = Depends(get_db)
):
    """Get a single task"""
    return service.get(db, user_id, task_id)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    request: Request,
    task_id: int,
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    due_date: Optional[str] = Form(None, alias="dueDate"),
    priority: Optional[str] = Form(None),
    status_value: Optional[str] = Form(None, alias="status"),
    image: Optional[UploadFile] = File(None),
    user_id: int = Depends(get_current_user_id),
    service: TaskService = Depends(get_task_service),
    db: Session = Depends(get_db)
):
    """Update any subset of a task's fields"""
    parsed = {
        "title": title,
        "description": description,
        "due_date": due_date,
        "priority": priority,
        "status": status_value,
    }
    # FastAPI maps an empty form value to None; the raw form tells sent-but-empty
    # (clear the field) apart from not sent (keep the stored value)
    form = await request.form()
    fields = {}
    for name, key in FORM_KEYS.items():
        if key in form:
            fields[name] = parsed[name] if parsed[name] is not None else ""

    incoming = await attachment_service.read_upload(image)
    return await run_in_threadpool(service.update, db, user_id, task_id, fields, image=incoming)


@router.delete("/{task_id}", response_model=MessageResponse)
def delete_task(
    task_id: int,
    user_id: int = Depends(get_current_user_id),
    service: TaskService = Depends(get_task_service),
    db: Session = Depends(get_db)
):
    """Delete a task and its image"""
    service.delete(db, user_id, task_id)
    return {"message": "Task deleted"}

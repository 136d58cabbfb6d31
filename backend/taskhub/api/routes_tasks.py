"""Task CRUD endpoints."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..chat.store import PersistedMessage
from ..core.db import get_session
from ..core.errors import NotFound, ValidationFailure
from ..models import Project, Task, TaskFile, TaskPriority, TaskStatus, User
from .common import CamelModel, require_user_id

logger = logging.getLogger(__name__)
router = APIRouter()


class TaskCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    project_id: Optional[uuid.UUID] = None
    due_date: Optional[datetime] = None
    participants: list[uuid.UUID] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    location: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class TaskUpdateRequest(CamelModel):
    """Partial update; the chat log is not writable through this model."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    project_id: Optional[uuid.UUID] = None
    due_date: Optional[datetime] = None
    participants: Optional[list[uuid.UUID]] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    location: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class TaskFileRequest(CamelModel):
    url: str = Field(..., min_length=1, max_length=2048)
    type: Optional[str] = Field(default=None, max_length=255)


class TaskFileResponse(CamelModel):
    id: uuid.UUID
    url: str
    type: Optional[str]
    uploaded_by: Optional[uuid.UUID]
    timestamp: Optional[datetime]


class TaskResponse(CamelModel):
    id: uuid.UUID
    name: str
    description: Optional[str]
    project_id: Optional[uuid.UUID]
    due_date: Optional[datetime]
    participants: list[uuid.UUID]
    status: str
    priority: str
    location: Optional[str]
    notes: Optional[str]
    created_by: Optional[uuid.UUID]
    created_at: Optional[datetime]
    chat: list[dict[str, Any]]
    files: list[TaskFileResponse]


def _to_file_response(task_file: TaskFile) -> TaskFileResponse:
    return TaskFileResponse(
        id=task_file.id,
        url=task_file.url,
        type=task_file.content_type,
        uploaded_by=task_file.uploaded_by,
        timestamp=task_file.created_at,
    )


def _to_task_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        name=task.name,
        description=task.description,
        project_id=task.project_id,
        due_date=task.due_date,
        participants=[user.id for user in task.participants],
        status=task.status,
        priority=task.priority,
        location=task.location,
        notes=task.notes,
        created_by=task.created_by,
        created_at=task.created_at,
        chat=[PersistedMessage.from_row(row).to_payload() for row in task.chat],
        files=[_to_file_response(task_file) for task_file in task.files],
    )


def _get_task(session: Session, task_id: uuid.UUID) -> Task:
    task = session.get(Task, task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


def _ensure_project(session: Session, project_id: uuid.UUID | None) -> None:
    if project_id is not None and session.get(Project, project_id) is None:
        raise NotFound("Project not found")


def _load_participants(session: Session, user_ids: Iterable[uuid.UUID]) -> list[User]:
    wanted = list(dict.fromkeys(user_ids))
    if not wanted:
        return []
    users = session.execute(select(User).where(User.id.in_(wanted))).scalars().all()
    found = {user.id: user for user in users}
    missing = [str(user_id) for user_id in wanted if user_id not in found]
    if missing:
        raise ValidationFailure(f"Unknown participants: {', '.join(missing)}")
    return [found[user_id] for user_id in wanted]


@router.get("", response_model=list[TaskResponse], summary="List tasks")
async def list_tasks(
    project_id: Optional[uuid.UUID] = Query(default=None, alias="projectId"),
    team_id: Optional[uuid.UUID] = Query(default=None, alias="teamId"),
    session: Session = Depends(get_session),
) -> list[TaskResponse]:
    """Return tasks filtered by project and/or by the project's team."""

    stmt = (
        select(Task)
        .options(
            selectinload(Task.participants),
            selectinload(Task.chat),
            selectinload(Task.files),
        )
        .order_by(Task.created_at)
    )
    if project_id is not None:
        stmt = stmt.where(Task.project_id == project_id)
    if team_id is not None:
        stmt = stmt.join(Project, Project.id == Task.project_id).where(Project.team_id == team_id)
    tasks = session.execute(stmt).scalars().all()
    return [_to_task_response(task) for task in tasks]


@router.get("/{task_id}", response_model=TaskResponse, summary="Fetch a task")
async def read_task(task_id: uuid.UUID, session: Session = Depends(get_session)) -> TaskResponse:
    return _to_task_response(_get_task(session, task_id))


@router.post("", response_model=TaskResponse, summary="Create a task")
async def create_task(
    payload: TaskCreateRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> TaskResponse:
    user_id = require_user_id(request)
    _ensure_project(session, payload.project_id)

    task = Task(
        name=payload.name.strip(),
        description=payload.description,
        project_id=payload.project_id,
        due_date=payload.due_date,
        status=payload.status.value,
        priority=payload.priority.value,
        location=payload.location,
        notes=payload.notes,
        created_by=user_id,
    )
    task.participants = _load_participants(session, payload.participants)
    session.add(task)
    session.commit()
    session.refresh(task)

    logger.info("Created task %s in project %s", task.id, task.project_id)
    return _to_task_response(task)


@router.put("/{task_id}", response_model=TaskResponse, summary="Update a task")
async def update_task(
    task_id: uuid.UUID,
    payload: TaskUpdateRequest,
    session: Session = Depends(get_session),
) -> TaskResponse:
    task = _get_task(session, task_id)
    changes = payload.model_dump(exclude_unset=True)

    if "project_id" in changes:
        _ensure_project(session, changes["project_id"])
    if "participants" in changes:
        task.participants = _load_participants(session, changes.pop("participants") or [])
    for field in ("status", "priority"):
        if field in changes:
            value = changes.pop(field)
            if value is None:
                raise ValidationFailure(f"{field} cannot be null")
            setattr(task, field, value.value)
    if changes.get("name") is None:
        changes.pop("name", None)

    for field, value in changes.items():
        setattr(task, field, value)
    session.commit()
    return _to_task_response(task)


@router.delete("/{task_id}", summary="Delete a task")
async def delete_task(task_id: uuid.UUID, session: Session = Depends(get_session)) -> dict[str, str]:
    task = _get_task(session, task_id)
    session.delete(task)
    session.commit()
    logger.info("Deleted task %s", task_id)
    return {"detail": "Task deleted"}


@router.post("/{task_id}/files", response_model=TaskFileResponse, summary="Attach an uploaded file")
async def attach_file(
    task_id: uuid.UUID,
    payload: TaskFileRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> TaskFileResponse:
    user_id = require_user_id(request)
    task = _get_task(session, task_id)
    task_file = TaskFile(task_id=task.id, url=payload.url, content_type=payload.type, uploaded_by=user_id)
    session.add(task_file)
    session.commit()
    session.refresh(task_file)
    return _to_file_response(task_file)

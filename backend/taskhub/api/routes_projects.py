"""Project CRUD endpoints."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.db import get_session
from ..core.errors import NotFound
from ..models import Project, Team
from .common import CamelModel, require_user_id

router = APIRouter()


class ProjectCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=32)
    icon: Optional[str] = Field(default=None, max_length=255)
    header_image: Optional[str] = Field(default=None, max_length=2048)
    team_id: Optional[uuid.UUID] = None


class ProjectUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=32)
    icon: Optional[str] = Field(default=None, max_length=255)
    header_image: Optional[str] = Field(default=None, max_length=2048)
    team_id: Optional[uuid.UUID] = None


class ProjectResponse(CamelModel):
    id: uuid.UUID
    name: str
    description: Optional[str]
    color: Optional[str]
    icon: Optional[str]
    header_image: Optional[str]
    team_id: Optional[uuid.UUID]
    created_by: Optional[uuid.UUID]
    created_at: Optional[datetime]


def _get_project(session: Session, project_id: uuid.UUID) -> Project:
    project = session.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found")
    return project


def _ensure_team(session: Session, team_id: uuid.UUID | None) -> None:
    if team_id is not None and session.get(Team, team_id) is None:
        raise NotFound("Team not found")


@router.get("", response_model=list[ProjectResponse], summary="List projects")
async def list_projects(
    team_id: Optional[uuid.UUID] = Query(default=None, alias="teamId"),
    session: Session = Depends(get_session),
) -> list[ProjectResponse]:
    stmt = select(Project).order_by(Project.created_at)
    if team_id is not None:
        stmt = stmt.where(Project.team_id == team_id)
    projects = session.execute(stmt).scalars().all()
    return [ProjectResponse.model_validate(project) for project in projects]


@router.post("", response_model=ProjectResponse, summary="Create a project")
async def create_project(
    payload: ProjectCreateRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> ProjectResponse:
    user_id = require_user_id(request)
    _ensure_team(session, payload.team_id)
    project = Project(**payload.model_dump(), created_by=user_id)
    session.add(project)
    session.commit()
    session.refresh(project)
    return ProjectResponse.model_validate(project)


@router.put("/{project_id}", response_model=ProjectResponse, summary="Update a project")
async def update_project(
    project_id: uuid.UUID,
    payload: ProjectUpdateRequest,
    session: Session = Depends(get_session),
) -> ProjectResponse:
    project = _get_project(session, project_id)
    changes = payload.model_dump(exclude_unset=True)
    if "team_id" in changes:
        _ensure_team(session, changes["team_id"])
    if changes.get("name") is None:
        changes.pop("name", None)
    for field, value in changes.items():
        setattr(project, field, value)
    session.commit()
    return ProjectResponse.model_validate(project)


@router.delete("/{project_id}", summary="Delete a project")
async def delete_project(project_id: uuid.UUID, session: Session = Depends(get_session)) -> dict[str, str]:
    project = _get_project(session, project_id)
    session.delete(project)
    session.commit()
    return {"detail": "Project deleted"}

"""Team endpoints: create, list own teams, join by invite link."""
from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..core.db import get_session
from ..core.errors import NotFound
from ..models import Team, TeamMember
from .common import CamelModel, require_user_id

logger = logging.getLogger(__name__)
router = APIRouter()


class TeamCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)


class TeamResponse(CamelModel):
    id: uuid.UUID
    name: str
    invite_link: str
    members: list[uuid.UUID]
    created_by: Optional[uuid.UUID]
    created_at: Optional[datetime]


def _to_team_response(team: Team) -> TeamResponse:
    return TeamResponse(
        id=team.id,
        name=team.name,
        invite_link=team.invite_link,
        members=[member.user_id for member in team.members],
        created_by=team.created_by,
        created_at=team.created_at,
    )


@router.post("", response_model=TeamResponse, summary="Create a team")
async def create_team(
    payload: TeamCreateRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> TeamResponse:
    """Create a team with the caller as its first member."""

    user_id = require_user_id(request)
    team = Team(name=payload.name.strip(), invite_link=secrets.token_urlsafe(16), created_by=user_id)
    team.members.append(TeamMember(user_id=user_id))
    session.add(team)
    session.commit()
    session.refresh(team)

    logger.info("Created team %s for user %s", team.id, user_id)
    return _to_team_response(team)


@router.get("", response_model=list[TeamResponse], summary="List the caller's teams")
async def list_teams(request: Request, session: Session = Depends(get_session)) -> list[TeamResponse]:
    user_id = require_user_id(request)
    stmt = (
        select(Team)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .where(TeamMember.user_id == user_id)
        .options(selectinload(Team.members))
        .order_by(Team.created_at)
    )
    teams = session.execute(stmt).scalars().unique().all()
    return [_to_team_response(team) for team in teams]


@router.post("/join/{invite_link}", response_model=TeamResponse, summary="Join a team by invite link")
async def join_team(
    invite_link: str,
    request: Request,
    session: Session = Depends(get_session),
) -> TeamResponse:
    """Add the caller to the team; joining twice is a no-op."""

    user_id = require_user_id(request)
    team = session.execute(select(Team).where(Team.invite_link == invite_link)).scalar_one_or_none()
    if team is None:
        raise NotFound("Team not found")

    if all(member.user_id != user_id for member in team.members):
        team.members.append(TeamMember(user_id=user_id))
        session.commit()
        logger.info("User %s joined team %s", user_id, team.id)
    return _to_team_response(team)

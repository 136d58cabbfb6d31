"""Helpers shared by the HTTP routers."""
from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.requests import Request

from ..core.errors import Unauthenticated
from ..realtime import Gateway


class CamelModel(BaseModel):
    """Pydantic model exchanged with clients using camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def require_user_id(request: Request) -> uuid.UUID:
    raw_user_id = getattr(request.state, "user_id", None)
    if not raw_user_id:
        raise Unauthenticated()
    try:
        return uuid.UUID(str(raw_user_id))
    except (TypeError, ValueError) as exc:
        raise Unauthenticated("Invalid token") from exc


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway

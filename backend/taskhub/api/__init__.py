"""API package exports."""
from . import (
    routes_admin,
    routes_auth,
    routes_chat,
    routes_projects,
    routes_realtime,
    routes_tasks,
    routes_teams,
    routes_upload,
)

__all__ = [
    "routes_admin",
    "routes_auth",
    "routes_chat",
    "routes_projects",
    "routes_realtime",
    "routes_tasks",
    "routes_teams",
    "routes_upload",
]

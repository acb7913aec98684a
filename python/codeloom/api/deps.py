"""FastAPI dependencies for route handlers.

Process-wide collaborators (stores, workspace registry) live on app.state and
are created in the app lifespan. Identity comes from the X-User-Id header;
authentication itself happens upstream.
"""

from typing import Annotated

from fastapi import Depends, Header, Request

from codeloom.errors import ApiError, ApiErrorCode, NotFoundError
from codeloom.services.workspace import Workspace, WorkspaceRegistry
from codeloom.storage.records import UserRecord
from codeloom.storage.sessions import SessionStoreBase
from codeloom.storage.users import UserStoreBase

__all__ = [
    "get_registry",
    "get_session_store",
    "get_user_store",
    "get_viewer",
    "get_viewer_workspace",
]


def get_registry(request: Request) -> WorkspaceRegistry:
    return request.app.state.workspaces


def get_session_store(request: Request) -> SessionStoreBase:
    return request.app.state.session_store


def get_user_store(request: Request) -> UserStoreBase:
    return request.app.state.user_store


def get_viewer(
    users: Annotated[UserStoreBase, Depends(get_user_store)],
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> UserRecord:
    """Resolve the calling user, creating a free-tier record on first sight.

    Raises:
        ApiError: E_UNAUTHENTICATED if the header is missing or blank.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Missing X-User-Id header")
    return users.get_or_create(user_id)


def get_viewer_workspace(
    session_id: str,
    viewer: Annotated[UserRecord, Depends(get_viewer)],
    registry: Annotated[WorkspaceRegistry, Depends(get_registry)],
) -> Workspace:
    """Load a session owned by the viewer.

    Sessions of other users are reported as not found (no existence leak).
    """
    workspace = registry.get(session_id)
    if workspace is None or (
        workspace.owner_id is not None and workspace.owner_id != viewer.id
    ):
        raise NotFoundError(ApiErrorCode.E_SESSION_NOT_FOUND, "Session not found")
    return workspace

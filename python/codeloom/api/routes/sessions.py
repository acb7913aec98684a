"""Session API routes.

Route handlers for session state and artifact navigation.
Routes are transport-only: each calls exactly one service function.

- Sessions: POST (create), GET (list recent), GET one
- Mode: POST /sessions/{id}/mode (409 while a generation is in flight)
- Versions: POST /sessions/{id}/undo, /redo (409 while busy)
- Manual edit: PUT /sessions/{id}/code (premium/admin only)
- Stop: POST /sessions/{id}/stop
- Export: GET /sessions/{id}/export (HTML with attribution footer)

All routes require the X-User-Id header.
Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from codeloom.api.deps import get_registry, get_session_store, get_viewer, get_viewer_workspace
from codeloom.responses import success_response
from codeloom.schemas.session import CreateSessionRequest, SwitchModeRequest, UpdateCodeRequest
from codeloom.services import sessions as sessions_service
from codeloom.services.workspace import Workspace, WorkspaceRegistry
from codeloom.storage.records import UserRecord
from codeloom.storage.sessions import SessionStoreBase

router = APIRouter(tags=["sessions"])


@router.post("/sessions", status_code=201)
async def create_session(
    body: CreateSessionRequest,
    viewer: Annotated[UserRecord, Depends(get_viewer)],
    registry: Annotated[WorkspaceRegistry, Depends(get_registry)],
) -> dict:
    """Create a session.

    With start=true the bootstrap request runs before the response is sent.

    Errors:
        E_QUOTA_EXCEEDED (429): start=true and the daily limit is reached.
    """
    result = await sessions_service.create_session(registry, viewer, body)
    return success_response(result.model_dump(mode="json"))


@router.get("/sessions")
def list_sessions(
    viewer: Annotated[UserRecord, Depends(get_viewer)],
    sessions: Annotated[SessionStoreBase, Depends(get_session_store)],
) -> dict:
    """Most recently modified stored sessions of the viewer."""
    result = sessions_service.list_sessions(sessions, viewer)
    return success_response([s.model_dump(mode="json") for s in result])


@router.get("/sessions/{session_id}")
def get_session(workspace: Annotated[Workspace, Depends(get_viewer_workspace)]) -> dict:
    return success_response(sessions_service.session_out(workspace).model_dump(mode="json"))


@router.post("/sessions/{session_id}/mode")
async def switch_mode(
    body: SwitchModeRequest,
    workspace: Annotated[Workspace, Depends(get_viewer_workspace)],
) -> dict:
    """Switch the active conversation mode.

    Errors:
        E_SESSION_BUSY (409): A generation is in flight.
    """
    result = await sessions_service.switch_mode(workspace, body.mode)
    return success_response(result.model_dump(mode="json"))


@router.post("/sessions/{session_id}/undo")
async def undo(workspace: Annotated[Workspace, Depends(get_viewer_workspace)]) -> dict:
    result = await sessions_service.undo(workspace)
    return success_response(result.model_dump(mode="json"))


@router.post("/sessions/{session_id}/redo")
async def redo(workspace: Annotated[Workspace, Depends(get_viewer_workspace)]) -> dict:
    result = await sessions_service.redo(workspace)
    return success_response(result.model_dump(mode="json"))


@router.put("/sessions/{session_id}/code")
async def update_code(
    body: UpdateCodeRequest,
    viewer: Annotated[UserRecord, Depends(get_viewer)],
    workspace: Annotated[Workspace, Depends(get_viewer_workspace)],
) -> dict:
    """Replace the artifact by hand.

    Errors:
        E_FORBIDDEN (403): Viewer is on the free tier.
        E_SESSION_BUSY (409): A generation is in flight.
    """
    result = await sessions_service.update_code(workspace, viewer, body.code)
    return success_response(result.model_dump(mode="json"))


@router.post("/sessions/{session_id}/stop")
async def stop(workspace: Annotated[Workspace, Depends(get_viewer_workspace)]) -> dict:
    """Abort the in-flight generation, if any. Partial output is kept."""
    return success_response(sessions_service.stop_generation(workspace))


@router.get("/sessions/{session_id}/export", response_class=HTMLResponse)
def export(
    viewer: Annotated[UserRecord, Depends(get_viewer)],
    workspace: Annotated[Workspace, Depends(get_viewer_workspace)],
) -> HTMLResponse:
    return HTMLResponse(
        content=workspace.export(viewer),
        headers={"Content-Disposition": f'attachment; filename="{workspace.id}.html"'},
    )

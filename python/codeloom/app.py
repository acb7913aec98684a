"""Application factory for the Codeloom API.

create_app wires error handlers, the malformed-JSON guard and routes. The
lifespan owns the shared httpx client and builds the workspace services
(Gemini adapter, dispatcher, request builder, quota governor, stores) once
per process. RequestIDMiddleware is added separately by
add_request_id_middleware so it can be registered last and wrap everything.
"""

import json
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from codeloom.api.routes import create_api_router
from codeloom.config import Environment, get_settings
from codeloom.errors import ApiError, ApiErrorCode
from codeloom.logging import configure_logging, get_logger
from codeloom.middleware.request_id import RequestIDMiddleware
from codeloom.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from codeloom.services.llm.adapter import LLMAdapter
from codeloom.services.llm.dispatch import Dispatcher
from codeloom.services.llm.gemini_adapter import GeminiAdapter
from codeloom.services.llm.prompt import RequestBuilder
from codeloom.services.quota import QuotaGovernor
from codeloom.services.workspace import WorkspaceRegistry, WorkspaceServices
from codeloom.storage import open_stores
from codeloom.storage.sessions import SessionStoreBase
from codeloom.storage.users import UserStoreBase

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources.

    Collaborators already placed on app.state by create_app (tests) are kept;
    everything else is built from settings.
    """
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(float(settings.llm_timeout_s), connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )

    adapter = app.state.llm_adapter or GeminiAdapter(app.state.httpx_client)
    dispatcher = Dispatcher(
        adapter,
        api_key=settings.gemini_api_key or "",
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
        base_delay_ms=settings.llm_retry_base_delay_ms,
        **app.state.dispatcher_options,
    )

    if app.state.session_store is None or app.state.user_store is None:
        app.state.session_store, app.state.user_store = open_stores(settings)

    services = WorkspaceServices(
        builder=RequestBuilder(
            settings.default_model,
            max_prompt_chars=settings.max_prompt_chars,
            max_attachment_bytes=settings.max_attachment_bytes,
        ),
        dispatcher=dispatcher,
        quota=QuotaGovernor(settings.daily_request_limit),
        sessions=app.state.session_store,
        users=app.state.user_store,
    )
    app.state.workspaces = WorkspaceRegistry(services, max_live=settings.max_stored_sessions)

    logger.info(
        "app.services_ready",
        model=settings.default_model,
        daily_request_limit=settings.daily_request_limit,
        max_retries=settings.llm_max_retries,
        persistent_store=bool(settings.database_url),
    )

    yield

    await app.state.httpx_client.aclose()
    logger.info("app.http_client_closed")


_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


async def reject_malformed_json(request: Request, call_next):
    """Answer 400 for undecodable JSON bodies before routing sees them."""
    if request.method in _BODY_METHODS and "application/json" in request.headers.get(
        "content-type", ""
    ):
        body = await request.body()
        if body:
            try:
                json.loads(body)
            except json.JSONDecodeError:
                return JSONResponse(
                    status_code=400,
                    content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"),
                )
    return await call_next(request)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Map every failure onto the error envelope."""
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


def create_app(
    *,
    llm_adapter: LLMAdapter | None = None,
    session_store: SessionStoreBase | None = None,
    user_store: UserStoreBase | None = None,
    dispatcher_options: dict | None = None,
) -> FastAPI:
    """Build the Codeloom API.

    The keyword arguments replace collaborators the lifespan would otherwise
    build from settings: tests pass a scripted adapter, in-memory stores, and
    a recording sleep through dispatcher_options.
    """
    settings = get_settings()
    configure_logging(
        json_format=settings.log_json and settings.codeloom_env != Environment.LOCAL
    )

    app = FastAPI(
        title="Codeloom API",
        description="Conversational code workspace backed by a generative model",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.llm_adapter = llm_adapter
    app.state.session_store = session_store
    app.state.user_store = user_store
    app.state.dispatcher_options = dispatcher_options or {}

    register_error_handlers(app)
    app.middleware("http")(reject_malformed_json)
    app.include_router(create_api_router())
    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Install RequestIDMiddleware. Call after all other middleware so it wraps them."""
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)

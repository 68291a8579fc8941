"""FastAPI application for the mailtriage web interface."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Iterator

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from mailtriage import __version__
from mailtriage.compactor import Compactor
from mailtriage.completion import CompletionClient
from mailtriage.config import Config, load_config
from mailtriage.errors import AuthError, UpstreamError
from mailtriage.imap_client import fetch_unread
from mailtriage.models import (
    BatchItem,
    BatchProgress,
    Message,
    SessionData,
    SessionUser,
    TriageResult,
)
from mailtriage.pipeline import TriagePipeline
from mailtriage.structured_logger import StructuredLogger
from mailtriage.web.session import SessionStore

logger = logging.getLogger(__name__)

Fetcher = Callable[..., list[Message]]


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    email: str | None = None
    app_password: str | None = Field(default=None, alias="appPassword")


class TriageRequest(BaseModel):
    email: Message | None = None


class BatchRequest(BaseModel):
    emails: list[Message] = Field(default_factory=list)
    triaged: dict[str, TriageResult] = Field(default_factory=dict)
    limit: int | None = Field(default=None, ge=1)


def create_app(
    config: Config | None = None,
    fetcher: Fetcher = fetch_unread,
    transport: httpx.BaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Application configuration (defaults plus environment if None)
        fetcher: Mailbox fetch function, ``fetcher(user, secret, limit, config)``
        transport: Optional httpx transport shared by the outbound API clients
    """
    config = config or load_config()

    compactor = Compactor(config.compaction, transport=transport)
    completion = CompletionClient(config.completion, transport=transport)
    audit = StructuredLogger(config.logging.audit_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Close outbound clients on shutdown."""
        yield
        compactor.close()
        completion.close()

    app = FastAPI(
        title="mailtriage",
        description="Triage unread email with a language model",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session.get_secret_key(),
        session_cookie=config.session.cookie_name,
        max_age=config.session.max_age,
        https_only=config.session.https_only,
        same_site="lax",
    )

    app.state.config = config
    app.state.fetcher = fetcher
    app.state.audit = audit

    def build_pipeline() -> TriagePipeline:
        api_key = config.completion.get_api_key()
        if not api_key:
            raise HTTPException(
                status_code=500,
                detail="Server configuration error: Missing completion API key",
            )
        return TriagePipeline(
            compactor,
            completion,
            api_key=api_key,
            compaction_api_key=config.compaction.get_api_key(fallback=api_key),
            max_body_chars=config.completion.max_body_chars,
            audit=audit,
        )

    app.state.build_pipeline = build_pipeline

    register_error_handlers(app)
    register_routes(app)

    return app


def register_error_handlers(app: FastAPI) -> None:
    """Render every error as ``{"error": ...}``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Invalid request data"}, status_code=400)


def _require_user(request: Request) -> SessionUser:
    """Return the logged-in user or raise 401."""
    session = SessionStore(request).load()
    if session is None or not session.is_logged_in or session.user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return session.user


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def _event_payload(event: BatchProgress | BatchItem) -> dict[str, Any]:
    if isinstance(event, BatchProgress):
        return {
            "type": "progress",
            "current": event.current,
            "total": event.total,
            "message": event.message,
        }
    if event.ok:
        return {"type": "result", "messageId": event.message_id, "result": _dump(event.result)}
    return {"type": "error", "messageId": event.message_id, "error": event.error}


def register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/api/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    @app.post("/api/login")
    async def login(request: Request, body: LoginRequest):
        """Store mailbox credentials in the session."""
        if not body.name or not body.email or not body.app_password:
            raise HTTPException(status_code=400, detail="Missing required fields")

        SessionStore(request).save(
            SessionData(
                user=SessionUser(
                    name=body.name,
                    mailbox_user=body.email,
                    mailbox_secret=body.app_password,
                ),
                is_logged_in=True,
            )
        )
        app.state.audit.log_session("login", body.email)
        return {"success": True}

    @app.post("/api/logout")
    async def logout(request: Request):
        """Destroy the session."""
        store = SessionStore(request)
        session = store.load()
        store.destroy()
        app.state.audit.log_session(
            "logout", session.user.mailbox_user if session and session.user else None
        )
        return {"success": True}

    @app.get("/api/session")
    async def get_session(request: Request):
        """Report login state without exposing credentials."""
        session = SessionStore(request).load()
        if session is None or not session.is_logged_in or session.user is None:
            return {"isLoggedIn": False, "user": None}
        return {
            "isLoggedIn": True,
            "user": {"name": session.user.name, "email": session.user.mailbox_user},
        }

    @app.get("/api/emails")
    async def get_emails(request: Request, limit: int | None = Query(default=None, ge=1)):
        """Fetch unread messages for the logged-in user."""
        user = _require_user(request)
        if not user.mailbox_user or not user.mailbox_secret:
            raise HTTPException(status_code=400, detail="Missing mailbox credentials in session")

        try:
            messages = await run_in_threadpool(
                app.state.fetcher,
                user.mailbox_user,
                user.mailbox_secret,
                limit,
                app.state.config.imap,
            )
        except AuthError as e:
            logger.warning(f"Mailbox login rejected for {user.mailbox_user}: {e}")
            raise HTTPException(status_code=401, detail="Mailbox authentication failed")
        except Exception as e:
            logger.error(f"Error fetching emails: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to fetch emails")

        app.state.audit.log_fetch(user.mailbox_user, len(messages))
        return {"emails": [_dump(m) for m in messages]}

    @app.post("/api/triage")
    async def triage(request: Request, body: TriageRequest):
        """Triage a single message."""
        _require_user(request)
        pipeline = app.state.build_pipeline()

        if body.email is None:
            raise HTTPException(status_code=400, detail="Email data required")

        try:
            result = await run_in_threadpool(pipeline.triage, body.email)
        except UpstreamError as e:
            logger.error(f"Error processing email {body.email.id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to triage email")
        except Exception as e:
            logger.error(f"Error processing email {body.email.id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Failed to triage email")

        return {"result": _dump(result)}

    @app.post("/api/triage/batch")
    async def triage_batch(request: Request, body: BatchRequest):
        """Triage a batch sequentially, streaming NDJSON progress events."""
        _require_user(request)
        pipeline = app.state.build_pipeline()

        if not body.emails:
            raise HTTPException(status_code=400, detail="Email data required")

        def stream() -> Iterator[str]:
            triaged = dict(body.triaged)
            succeeded = failed = 0
            for event in pipeline.iter_batch(body.emails, triaged, limit=body.limit):
                if isinstance(event, BatchItem):
                    if event.ok:
                        succeeded += 1
                    else:
                        failed += 1
                yield json.dumps(_event_payload(event)) + "\n"
            yield json.dumps({"type": "done", "triaged": succeeded, "failed": failed}) + "\n"

        return StreamingResponse(stream(), media_type="application/x-ndjson")


# Default app instance
app = create_app()

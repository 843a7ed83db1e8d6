"""REST API server exposing the transcription pipeline and ledger.

Provides ``create_app()`` which returns a FastAPI application with:

- ``GET  /health``
- ``POST /users``, ``GET /users`` and ``GET /users/{user_id}`` -- accounts,
  each created with a free-tier ledger
- ``POST /transcripts/transcribe-and-correct`` -- upload audio, returns
  raw and rewritten text
- ``GET  /transcripts/{transcript_id}`` and ``GET /transcripts/user/{user_id}``
- ``/prompts`` -- style-guidance template CRUD
- ``GET  /subscription/status`` and ``POST /subscription/{add-credits,
  upgrade, downgrade, reset-balance}``

Identity is established upstream; ledger endpoints read the trusted
user id from the ``X-User-Id`` header.

Usage::

    uvicorn speech_keyboard.integrations.server:create_app --factory
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, File, Form, Header, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from speech_keyboard import __version__
from speech_keyboard.config import Settings, configure_logging
from speech_keyboard.errors import (
    InsufficientBalanceError,
    InvalidInputError,
    LedgerNotFoundError,
    PersistenceError,
    SpeechKeyboardError,
)
from speech_keyboard.models.result import TranscriptionRequest
from speech_keyboard.models.subscription import LedgerSnapshot

logger = logging.getLogger(__name__)


class _Unauthenticated(Exception):
    """Raised when a ledger endpoint is called without ``X-User-Id``."""


class CreateUserRequest(BaseModel):
    firebase_uid: Optional[str] = None
    email: Optional[str] = None


class AddCreditsRequest(BaseModel):
    credits: int = Field(gt=0)


class CreatePromptRequest(BaseModel):
    user_id: int
    title: Optional[str] = None
    content: Optional[str] = None


class UpdatePromptRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str


def _error(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    return JSONResponse(body, status_code=status_code)


def _snapshot_response(snapshot: LedgerSnapshot) -> dict[str, Any]:
    return {"success": True, "data": snapshot.to_dict()}


def create_app(services: Any = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create a FastAPI application wrapping the service graph.

    Parameters
    ----------
    services:
        Pre-built ``Services``.  If ``None``, the graph is built from
        ``settings`` and its database is opened and closed with the
        application lifespan.
    settings:
        Process settings.  Defaults to ``services.settings`` or, when no
        services are given, ``Settings.from_env()``.

    Returns
    -------
    FastAPI
        A FastAPI application instance.
    """
    owns_services = services is None
    if settings is None:
        settings = Settings.from_env() if owns_services else services.settings
    if owns_services:
        from speech_keyboard.services import build_services

        configure_logging(settings.log_level)
        services = build_services(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if owns_services:
            await services.start()
        try:
            yield
        finally:
            if owns_services:
                await services.close()

    api = FastAPI(
        title="Speech Keyboard API",
        description="Audio transcription with AI-driven correction and minute balances.",
        version=__version__,
        lifespan=lifespan,
    )

    def _detail(exc: Exception) -> str:
        return str(exc) if settings.expose_error_details else "Something went wrong"

    # -- Error mapping --

    @api.exception_handler(InvalidInputError)
    async def invalid_input(_: Request, exc: InvalidInputError) -> JSONResponse:
        return _error(400, str(exc))

    @api.exception_handler(InsufficientBalanceError)
    async def insufficient_balance(
        _: Request, exc: InsufficientBalanceError
    ) -> JSONResponse:
        return _error(402, "Insufficient balance", str(exc))

    @api.exception_handler(LedgerNotFoundError)
    async def ledger_not_found(_: Request, exc: LedgerNotFoundError) -> JSONResponse:
        return _error(404, "Subscription not found")

    @api.exception_handler(SpeechKeyboardError)
    async def internal_error(_: Request, exc: SpeechKeyboardError) -> JSONResponse:
        logger.error("Unhandled Speech Keyboard error: %s", exc)
        return _error(500, "Internal server error", _detail(exc))

    def _require_user(x_user_id: Optional[int]) -> int:
        if x_user_id is None:
            raise _Unauthenticated()
        return x_user_id

    @api.exception_handler(_Unauthenticated)
    async def unauthenticated(_: Request, exc: Exception) -> JSONResponse:
        return _error(401, "User not authenticated")

    # -- Routes --

    @api.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="ok", version=__version__)

    @api.get("/users")
    async def list_users() -> dict[str, Any]:
        users = await services.users.find_all()
        logger.info("Retrieved %d users", len(users))
        return {
            "success": True,
            "count": len(users),
            "data": [u.to_dict() for u in users],
        }

    @api.get("/users/{user_id}", response_model=None)
    async def user_by_id(user_id: int) -> Any:
        user = await services.users.find_by_id(user_id)
        if user is None:
            return _error(404, "User not found")
        return {"success": True, "data": user.to_dict()}

    @api.post("/users", status_code=201, response_model=None)
    async def create_user(body: CreateUserRequest) -> Any:
        """Create an account together with its free-tier ledger."""
        if not body.firebase_uid:
            return _error(400, "Firebase UID is required")

        duplicate = _error(409, "User with this Firebase UID already exists")
        if await services.users.find_by_external_uid(body.firebase_uid) is not None:
            return duplicate
        try:
            user = await services.users.provision(body.firebase_uid, email=body.email)
        except PersistenceError:
            # Lost a race on the unique uid.
            if await services.users.find_by_external_uid(body.firebase_uid) is not None:
                return duplicate
            raise

        logger.info("Created new user with ID: %d and free subscription", user.id)
        return {
            "success": True,
            "message": "User created successfully with free subscription",
            "data": user.to_dict(),
        }

    @api.post("/transcripts/transcribe-and-correct")
    async def transcribe_and_correct(
        audio: Optional[UploadFile] = File(default=None),
        prompt: Optional[str] = Form(default=None),
        user_id: Optional[int] = Form(default=None),
    ) -> JSONResponse:
        """Transcribe an uploaded audio file and rewrite the text.

        A failed rewrite still returns the raw transcription with
        ``correctionFailed`` set.  A failed transcription returns 422.
        """
        if audio is None:
            return _error(400, "No audio file provided")

        mime_type = audio.content_type or ""
        if mime_type not in settings.allowed_mime_types:
            return _error(
                400,
                f"Unsupported file type: {mime_type}. "
                f"Supported types: {', '.join(settings.allowed_mime_types)}",
            )

        contents = await audio.read()
        if len(contents) > settings.max_upload_bytes:
            return _error(
                413,
                f"Audio file exceeds the {settings.max_upload_bytes} byte limit",
            )

        request = TranscriptionRequest(
            user_id=user_id,
            audio=contents,
            filename=audio.filename or "audio",
            mime_type=mime_type,
            style_guidance=prompt or None,
        )

        try:
            result = await services.pipeline.run(request)
        except SpeechKeyboardError:
            raise
        except Exception as exc:
            logger.exception("Transcript pipeline error")
            return _error(500, "Internal server error during processing", _detail(exc))

        return JSONResponse(
            result.to_payload(), status_code=200 if result.success else 422
        )

    @api.get("/transcripts/user/{user_id}")
    async def transcripts_by_user(user_id: int) -> dict[str, Any]:
        transcripts = await services.transcripts.find_by_user(user_id)
        logger.info("Retrieved %d transcripts for user: %d", len(transcripts), user_id)
        return {
            "success": True,
            "count": len(transcripts),
            "data": [t.to_dict() for t in transcripts],
        }

    @api.get("/transcripts/{transcript_id}", response_model=None)
    async def transcript_by_id(transcript_id: int) -> Any:
        transcript = await services.transcripts.find_by_id(transcript_id)
        if transcript is None:
            return _error(404, "Transcript not found")
        return {"success": True, "data": transcript.to_dict()}

    # Registered before /prompts/{prompt_id} so the literal paths win.
    @api.get("/prompts/user/{user_id}")
    async def prompts_by_user(user_id: int) -> dict[str, Any]:
        prompts = await services.prompts.find_by_user(user_id)
        logger.info("Retrieved %d prompts for user: %d", len(prompts), user_id)
        return {
            "success": True,
            "count": len(prompts),
            "data": [p.to_dict() for p in prompts],
        }

    @api.get("/prompts/defaults")
    async def default_prompts() -> dict[str, Any]:
        prompts = await services.prompts.find_defaults()
        return {
            "success": True,
            "count": len(prompts),
            "data": [p.to_dict() for p in prompts],
        }

    @api.post("/prompts", status_code=201, response_model=None)
    async def create_prompt(body: CreatePromptRequest) -> Any:
        if not body.title or not body.content:
            return _error(400, "Title and content are required")
        prompt = await services.prompts.create(
            body.title, body.content, user_id=body.user_id
        )
        logger.info("Created new prompt with ID: %d", prompt.id)
        return {
            "success": True,
            "message": "Prompt created successfully",
            "data": prompt.to_dict(),
        }

    @api.get("/prompts/{prompt_id}", response_model=None)
    async def prompt_by_id(prompt_id: int) -> Any:
        prompt = await services.prompts.find_by_id(prompt_id)
        if prompt is None:
            return _error(404, "Prompt not found")
        return {"success": True, "data": prompt.to_dict()}

    @api.put("/prompts/{prompt_id}", response_model=None)
    async def update_prompt(prompt_id: int, body: UpdatePromptRequest) -> Any:
        prompt = await services.prompts.update(
            prompt_id, title=body.title, content=body.content
        )
        if prompt is None:
            return _error(404, "Prompt not found")
        return {
            "success": True,
            "message": "Prompt updated successfully",
            "data": prompt.to_dict(),
        }

    @api.delete("/prompts/{prompt_id}", response_model=None)
    async def delete_prompt(prompt_id: int) -> Any:
        if not await services.prompts.delete(prompt_id):
            return _error(404, "Prompt not found")
        return {"success": True, "message": "Prompt deleted successfully"}

    @api.get("/subscription/status")
    async def subscription_status(
        x_user_id: Optional[int] = Header(default=None),
    ) -> dict[str, Any]:
        user_id = _require_user(x_user_id)
        return _snapshot_response(await services.ledger.get_snapshot(user_id))

    @api.post("/subscription/add-credits")
    async def add_credits(
        body: AddCreditsRequest,
        x_user_id: Optional[int] = Header(default=None),
    ) -> dict[str, Any]:
        user_id = _require_user(x_user_id)
        return _snapshot_response(await services.ledger.credit(user_id, body.credits))

    @api.post("/subscription/upgrade")
    async def upgrade(x_user_id: Optional[int] = Header(default=None)) -> dict[str, Any]:
        user_id = _require_user(x_user_id)
        return _snapshot_response(await services.ledger.upgrade_to_premium(user_id))

    @api.post("/subscription/downgrade")
    async def downgrade(x_user_id: Optional[int] = Header(default=None)) -> dict[str, Any]:
        user_id = _require_user(x_user_id)
        return _snapshot_response(await services.ledger.downgrade_to_free(user_id))

    @api.post("/subscription/reset-balance")
    async def reset_balance(
        x_user_id: Optional[int] = Header(default=None),
    ) -> dict[str, Any]:
        user_id = _require_user(x_user_id)
        return _snapshot_response(await services.ledger.replenish_if_expired(user_id))

    return api


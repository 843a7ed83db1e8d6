"""Tests for the REST API server (FastAPI)."""

from __future__ import annotations

import asyncio
import datetime as dt
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from speech_keyboard import __version__
from speech_keyboard.config import Settings
from speech_keyboard.errors import (
    InsufficientBalanceError,
    InvalidInputError,
    LedgerNotFoundError,
    PersistenceError,
)
from speech_keyboard.models.result import Outcome, PipelineResult
from speech_keyboard.models.subscription import LedgerSnapshot, Tier
from speech_keyboard.providers.base import SpeechProvider
from speech_keyboard.services import build_services
from tests.conftest import (
    StubRewriter,
    StubTranscriber,
    make_database,
    make_failure,
    provision_user,
)

_WAV = ("memo.wav", b"RIFF....WAVE", "audio/wav")


def _snapshot(balance: int = 10, status: Tier = Tier.FREE) -> LedgerSnapshot:
    return LedgerSnapshot(
        user_id=1,
        status=status,
        balance=balance,
        expiry_date=dt.date(2024, 4, 1),
        subscribe_date=dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc),
    )


def _completed() -> PipelineResult:
    return PipelineResult(
        outcome=Outcome.COMPLETED,
        raw_text="um hello",
        final_text="Hello.",
        duration_seconds=4.0,
        prompt_used="Be concise.",
        transcript_id=5,
    )


class _StubProvider(SpeechProvider):
    """Both capabilities backed by the shared test stubs."""

    def __init__(self) -> None:
        self._stt = StubTranscriber()
        self._rewriter = StubRewriter()

    @property
    def name(self) -> str:
        return "stub"

    @property
    def default_prompt(self) -> str:
        return self._rewriter.default_prompt

    async def transcribe(self, audio, filename, mime_type):
        return await self._stt.transcribe(audio, filename, mime_type)

    async def rewrite(self, raw_text, style_guidance=None):
        return await self._rewriter.rewrite(raw_text, style_guidance)


# -- App creation tests --


class TestCreateApp:
    def test_creates_fastapi_app(self) -> None:
        from speech_keyboard.integrations.server import create_app

        app = create_app(services=MagicMock(), settings=Settings())

        assert app.title == "Speech Keyboard API"
        assert app.version == __version__

    def test_app_has_required_routes(self) -> None:
        from speech_keyboard.integrations.server import create_app

        app = create_app(services=MagicMock(), settings=Settings())
        route_paths = {route.path for route in app.routes}

        assert "/health" in route_paths
        assert "/users" in route_paths
        assert "/users/{user_id}" in route_paths
        assert "/transcripts/transcribe-and-correct" in route_paths
        assert "/transcripts/{transcript_id}" in route_paths
        assert "/transcripts/user/{user_id}" in route_paths
        assert "/subscription/status" in route_paths
        assert "/subscription/add-credits" in route_paths
        assert "/subscription/upgrade" in route_paths
        assert "/subscription/downgrade" in route_paths
        assert "/subscription/reset-balance" in route_paths
        assert "/prompts" in route_paths
        assert "/prompts/defaults" in route_paths
        assert "/prompts/{prompt_id}" in route_paths

    def test_builds_services_from_settings(self) -> None:
        from speech_keyboard.integrations.server import create_app

        settings = Settings(log_level="WARNING")
        with patch("speech_keyboard.services.build_services") as mock_build, patch(
            "speech_keyboard.integrations.server.configure_logging"
        ) as mock_logging:
            create_app(settings=settings)

        mock_build.assert_called_once_with(settings)
        mock_logging.assert_called_once_with("WARNING")


# -- Endpoint tests with TestClient --


class TestEndpoints:
    @pytest.fixture(autouse=True)
    def _check_deps(self) -> None:
        pytest.importorskip("httpx")

    def _make_client(self, services: MagicMock | None = None, **settings: object):
        from fastapi.testclient import TestClient

        from speech_keyboard.integrations.server import create_app

        app = create_app(services=services or MagicMock(), settings=Settings(**settings))
        return TestClient(app)

    def test_health(self) -> None:
        response = self._make_client().get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__}

    def test_transcribe_completed(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(return_value=_completed())
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1", "prompt": "Be concise."},
        )

        assert response.status_code == 200
        assert response.json()["data"]["finalText"] == "Hello."
        request = services.pipeline.run.call_args.args[0]
        assert request.user_id == 1
        assert request.audio == b"RIFF....WAVE"
        assert request.filename == "memo.wav"
        assert request.mime_type == "audio/wav"
        assert request.style_guidance == "Be concise."

    def test_empty_prompt_means_no_guidance(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(return_value=_completed())
        client = self._make_client(services)

        client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1", "prompt": ""},
        )

        assert services.pipeline.run.call_args.args[0].style_guidance is None

    def test_transcribe_degraded_is_success(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(
            return_value=PipelineResult(
                outcome=Outcome.DEGRADED,
                raw_text="um hello",
                final_text="um hello",
                prompt_used="default",
                failure=make_failure(message="timed out"),
            )
        )
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["correctionFailed"] is True

    def test_transcribe_failed_is_422(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(
            return_value=PipelineResult(
                outcome=Outcome.FAILED, failure=make_failure(message="quota")
            )
        )
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1"},
        )

        assert response.status_code == 422
        assert response.json() == {
            "success": False,
            "message": "Transcription failed",
            "error": "quota",
        }

    def test_missing_audio(self) -> None:
        services = MagicMock()
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct", data={"user_id": "1"}
        )

        assert response.status_code == 400
        assert response.json()["message"] == "No audio file provided"
        services.pipeline.run.assert_not_called()

    def test_unsupported_mime_type(self) -> None:
        services = MagicMock()
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": ("notes.txt", b"hello", "text/plain")},
            data={"user_id": "1"},
        )

        assert response.status_code == 400
        assert "Unsupported file type: text/plain" in response.json()["message"]
        services.pipeline.run.assert_not_called()

    def test_oversized_upload(self) -> None:
        services = MagicMock()
        client = self._make_client(services, max_upload_bytes=4)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1"},
        )

        assert response.status_code == 413
        services.pipeline.run.assert_not_called()

    def test_invalid_input_is_400(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(
            side_effect=InvalidInputError("User ID is required")
        )
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct", files={"audio": _WAV}
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "message": "User ID is required"}

    def test_insufficient_balance_is_402(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(
            side_effect=InsufficientBalanceError(1, current_balance=0, required=1)
        )
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1"},
        )

        assert response.status_code == 402
        assert response.json()["message"] == "Insufficient balance"

    def test_unexpected_error_is_500(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(side_effect=RuntimeError("kaboom"))
        client = self._make_client(services)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1"},
        )

        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Internal server error during processing"
        assert body["error"] == "Something went wrong"

    def test_error_details_exposed_in_debug(self) -> None:
        services = MagicMock()
        services.pipeline.run = AsyncMock(side_effect=RuntimeError("kaboom"))
        client = self._make_client(services, expose_error_details=True)

        response = client.post(
            "/transcripts/transcribe-and-correct",
            files={"audio": _WAV},
            data={"user_id": "1"},
        )

        assert response.json()["error"] == "kaboom"

    def test_domain_storage_error_is_500(self) -> None:
        services = MagicMock()
        services.transcripts.find_by_user = AsyncMock(
            side_effect=PersistenceError("Failed to list transcripts: locked")
        )
        client = self._make_client(services)

        response = client.get("/transcripts/user/1")

        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"

    def test_transcripts_by_user(self) -> None:
        transcript = MagicMock()
        transcript.to_dict.return_value = {"id": 3, "text_final": "Hello."}
        services = MagicMock()
        services.transcripts.find_by_user = AsyncMock(return_value=[transcript])
        client = self._make_client(services)

        response = client.get("/transcripts/user/1")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "count": 1,
            "data": [{"id": 3, "text_final": "Hello."}],
        }

    def test_transcript_not_found(self) -> None:
        services = MagicMock()
        services.transcripts.find_by_id = AsyncMock(return_value=None)
        client = self._make_client(services)

        response = client.get("/transcripts/99")

        assert response.status_code == 404
        assert response.json()["message"] == "Transcript not found"

    def test_create_user(self) -> None:
        user = MagicMock(id=7)
        user.to_dict.return_value = {"id": 7, "external_uid": "auth0|new"}
        services = MagicMock()
        services.users.find_by_external_uid = AsyncMock(return_value=None)
        services.users.provision = AsyncMock(return_value=user)
        client = self._make_client(services)

        response = client.post(
            "/users", json={"firebase_uid": "auth0|new", "email": "new@example.com"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "User created successfully with free subscription"
        assert body["data"] == {"id": 7, "external_uid": "auth0|new"}
        services.users.provision.assert_awaited_once_with(
            "auth0|new", email="new@example.com"
        )

    def test_create_user_requires_uid(self) -> None:
        services = MagicMock()
        client = self._make_client(services)

        response = client.post("/users", json={"email": "new@example.com"})

        assert response.status_code == 400
        assert response.json()["message"] == "Firebase UID is required"
        services.users.provision.assert_not_called()

    def test_create_duplicate_user_is_409(self) -> None:
        services = MagicMock()
        services.users.find_by_external_uid = AsyncMock(return_value=MagicMock(id=1))
        services.users.provision = AsyncMock()
        client = self._make_client(services)

        response = client.post("/users", json={"firebase_uid": "auth0|taken"})

        assert response.status_code == 409
        assert response.json() == {
            "success": False,
            "message": "User with this Firebase UID already exists",
        }
        services.users.provision.assert_not_awaited()

    def test_create_user_race_on_uid_is_409(self) -> None:
        services = MagicMock()
        services.users.find_by_external_uid = AsyncMock(
            side_effect=[None, MagicMock(id=1)]
        )
        services.users.provision = AsyncMock(
            side_effect=PersistenceError("Failed to provision user: UNIQUE constraint")
        )
        client = self._make_client(services)

        response = client.post("/users", json={"firebase_uid": "auth0|taken"})

        assert response.status_code == 409

    def test_create_user_storage_error_is_500(self) -> None:
        services = MagicMock()
        services.users.find_by_external_uid = AsyncMock(return_value=None)
        services.users.provision = AsyncMock(
            side_effect=PersistenceError("Failed to provision user: disk I/O error")
        )
        client = self._make_client(services)

        response = client.post("/users", json={"firebase_uid": "auth0|new"})

        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"

    def test_list_users(self) -> None:
        user = MagicMock()
        user.to_dict.return_value = {"id": 1, "external_uid": "auth0|user-1"}
        services = MagicMock()
        services.users.find_all = AsyncMock(return_value=[user])
        client = self._make_client(services)

        response = client.get("/users")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "count": 1,
            "data": [{"id": 1, "external_uid": "auth0|user-1"}],
        }

    def test_user_not_found(self) -> None:
        services = MagicMock()
        services.users.find_by_id = AsyncMock(return_value=None)
        client = self._make_client(services)

        response = client.get("/users/99")

        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "User not found"}

    def test_create_prompt(self) -> None:
        prompt = MagicMock(id=4)
        prompt.to_dict.return_value = {"id": 4, "title": "Formal"}
        services = MagicMock()
        services.prompts.create = AsyncMock(return_value=prompt)
        client = self._make_client(services)

        response = client.post(
            "/prompts",
            json={"user_id": 1, "title": "Formal", "content": "Use a formal tone."},
        )

        assert response.status_code == 201
        assert response.json()["data"] == {"id": 4, "title": "Formal"}
        services.prompts.create.assert_awaited_once_with(
            "Formal", "Use a formal tone.", user_id=1
        )

    def test_create_prompt_requires_title_and_content(self) -> None:
        services = MagicMock()
        client = self._make_client(services)

        response = client.post("/prompts", json={"user_id": 1, "title": "Formal"})

        assert response.status_code == 400
        assert response.json()["message"] == "Title and content are required"
        services.prompts.create.assert_not_called()

    def test_default_prompts_not_shadowed_by_id_route(self) -> None:
        services = MagicMock()
        services.prompts.find_defaults = AsyncMock(return_value=[])
        client = self._make_client(services)

        response = client.get("/prompts/defaults")

        assert response.status_code == 200
        assert response.json() == {"success": True, "count": 0, "data": []}

    @pytest.mark.parametrize(
        ("method", "repo_method", "missing"),
        [
            ("get", "find_by_id", None),
            ("put", "update", None),
            ("delete", "delete", False),
        ],
    )
    def test_prompt_not_found(
        self, method: str, repo_method: str, missing: object
    ) -> None:
        services = MagicMock()
        setattr(services.prompts, repo_method, AsyncMock(return_value=missing))
        client = self._make_client(services)

        kwargs = {"json": {"title": "x"}} if method == "put" else {}
        response = getattr(client, method)("/prompts/9", **kwargs)

        assert response.status_code == 404
        assert response.json()["message"] == "Prompt not found"

    def test_subscription_requires_user_header(self) -> None:
        response = self._make_client().get("/subscription/status")
        assert response.status_code == 401
        assert response.json()["message"] == "User not authenticated"

    def test_subscription_status(self) -> None:
        services = MagicMock()
        services.ledger.get_snapshot = AsyncMock(return_value=_snapshot(balance=6))
        client = self._make_client(services)

        response = client.get("/subscription/status", headers={"X-User-Id": "1"})

        assert response.status_code == 200
        assert response.json()["data"]["balance"] == 6
        services.ledger.get_snapshot.assert_awaited_once_with(1)

    def test_subscription_not_found(self) -> None:
        services = MagicMock()
        services.ledger.get_snapshot = AsyncMock(side_effect=LedgerNotFoundError(1))
        client = self._make_client(services)

        response = client.get("/subscription/status", headers={"X-User-Id": "1"})

        assert response.status_code == 404
        assert response.json()["message"] == "Subscription not found"

    def test_add_credits(self) -> None:
        services = MagicMock()
        services.ledger.credit = AsyncMock(return_value=_snapshot(balance=60))
        client = self._make_client(services)

        response = client.post(
            "/subscription/add-credits",
            json={"credits": 50},
            headers={"X-User-Id": "1"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["balance"] == 60
        services.ledger.credit.assert_awaited_once_with(1, 50)

    def test_add_credits_rejects_non_positive(self) -> None:
        services = MagicMock()
        client = self._make_client(services)

        response = client.post(
            "/subscription/add-credits",
            json={"credits": 0},
            headers={"X-User-Id": "1"},
        )

        assert response.status_code == 422
        services.ledger.credit.assert_not_called()

    @pytest.mark.parametrize(
        ("path", "method"),
        [
            ("/subscription/upgrade", "upgrade_to_premium"),
            ("/subscription/downgrade", "downgrade_to_free"),
            ("/subscription/reset-balance", "replenish_if_expired"),
        ],
    )
    def test_ledger_actions(self, path: str, method: str) -> None:
        services = MagicMock()
        setattr(services.ledger, method, AsyncMock(return_value=_snapshot()))
        client = self._make_client(services)

        response = client.post(path, headers={"X-User-Id": "1"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        getattr(services.ledger, method).assert_awaited_once_with(1)


# -- End-to-end with a real database --


class TestEndToEnd:
    def test_transcribe_then_list(self, tmp_path) -> None:
        from fastapi.testclient import TestClient

        from speech_keyboard.integrations.server import create_app

        database = make_database(str(tmp_path / "e2e.db"))
        settings = Settings(meter_usage=True)
        services = build_services(settings, provider=_StubProvider(), database=database)
        user = asyncio.run(provision_user(database, today=dt.date.today()))
        client = TestClient(create_app(services=services))

        try:
            response = client.post(
                "/transcripts/transcribe-and-correct",
                files={"audio": _WAV},
                data={"user_id": str(user.id)},
            )
            listing = client.get(f"/transcripts/user/{user.id}")
            status = client.get(
                "/subscription/status", headers={"X-User-Id": str(user.id)}
            )
        finally:
            asyncio.run(database.dispose())

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["rawTranscript"] == "um so today we uh need to ship the thing"
        assert data["finalText"] == "Today we need to ship the thing."
        assert data["promptUsed"] == "Stub default prompt."

        assert listing.json()["count"] == 1
        assert listing.json()["data"][0]["id"] == data["transcriptId"]

        assert status.json()["data"]["balance"] == 9

    def test_create_user_then_read_ledger(self, tmp_path) -> None:
        from fastapi.testclient import TestClient

        from speech_keyboard.integrations.server import create_app

        database = make_database(str(tmp_path / "users.db"))
        services = build_services(Settings(), provider=_StubProvider(), database=database)
        client = TestClient(create_app(services=services))

        try:
            created = client.post(
                "/users", json={"firebase_uid": "auth0|e2e", "email": "e2e@example.com"}
            )
            user_id = created.json()["data"]["id"]
            duplicate = client.post("/users", json={"firebase_uid": "auth0|e2e"})
            fetched = client.get(f"/users/{user_id}")
            listing = client.get("/users")
            status = client.get(
                "/subscription/status", headers={"X-User-Id": str(user_id)}
            )
        finally:
            asyncio.run(database.dispose())

        assert created.status_code == 201
        assert created.json()["data"]["external_uid"] == "auth0|e2e"
        assert duplicate.status_code == 409
        assert fetched.json()["data"]["email"] == "e2e@example.com"
        assert listing.json()["count"] == 1
        assert status.json()["data"]["balance"] == 10
        assert status.json()["data"]["status"] == "free"

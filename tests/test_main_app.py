"""
Tests for growth/main.py - FastAPI app creation, middleware, error mapping and lifespan.
"""
import asyncio
import json
from contextlib import ExitStack
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from growth.errors import (
    CodeSpaceExhaustedError,
    ConflictError,
    DomainRuleViolation,
    NotFoundError,
    Reason,
)
from growth.main import create_app, growth_error_handler, lifespan


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_settings(**overrides):
    """Build a mock Settings object."""
    defaults = {
        "app_env": "test",
        "app_base_url": "http://localhost:8000",
        "allowed_origins": "",
        "log_level": "WARNING",
        "jwt_secret": "test_jwt_secret",
        "billing_webhook_secret": "whsec_test",
        "sentry_dsn": "",
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _app(**overrides) -> FastAPI:
    with (
        patch("growth.main.get_settings", return_value=_make_mock_settings(**overrides)),
        patch("growth.main.configure_structured_logging"),
    ):
        return create_app()


def _lifespan_patches(stack: ExitStack, settings) -> MagicMock:
    """Patch settings, the worker and task scheduling; return the mocked logger."""
    stack.enter_context(patch("growth.main.get_settings", return_value=settings))
    mock_logger = stack.enter_context(patch("growth.main.logger"))
    stack.enter_context(patch("asyncio.create_task", return_value=MagicMock(spec=asyncio.Task)))
    stack.enter_context(patch("asyncio.wait", new_callable=AsyncMock, return_value=(set(), set())))
    stack.enter_context(patch("growth.workers.trial_expiry.run_trial_expiry", return_value=AsyncMock()()))
    stack.enter_context(patch("growth.utils.redis_client.close_redis", new_callable=AsyncMock))
    return mock_logger


def _warnings(mock_logger) -> str:
    return " ".join(str(c) for c in mock_logger.warning.call_args_list)


# ---------------------------------------------------------------------------
# create_app - application factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_app_metadata(self):
        app = _app()
        assert isinstance(app, FastAPI)
        assert app.title == "Campaign Growth"
        assert app.version == "1.0.0"

    def test_configures_structured_logging(self):
        with (
            patch("growth.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("growth.main.configure_structured_logging") as mock_log,
        ):
            create_app()
        mock_log.assert_called_once_with("DEBUG")

    def test_includes_routes(self):
        paths = _app().openapi()["paths"]
        assert "/health" in paths
        assert "/api/v1/promoters/track-ref" in paths
        assert "/api/v1/admin/promoters/stats/leaderboard" in paths
        assert "/api/v1/billing/subscription-events" in paths


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class TestCorrelationIdMiddleware:
    def test_generates_correlation_id_when_missing(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        response = client.get("/health")
        assert len(response.headers["x-correlation-id"]) == 32

    def test_uses_existing_correlation_id(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        custom_cid = "abc123def456789012345678abcdef00"
        response = client.get("/health", headers={"X-Correlation-ID": custom_cid})
        assert response.headers["x-correlation-id"] == custom_cid


class TestCorsMiddleware:
    def _preflight(self, app, origin):
        client = TestClient(app, raise_server_exceptions=False)
        return client.options(
            "/health",
            headers={"Origin": origin, "Access-Control-Request-Method": "GET"},
        )

    def test_allows_app_base_url_origin(self):
        app = _app(app_base_url="https://crm.example.tw")
        response = self._preflight(app, "https://crm.example.tw")
        assert response.headers.get("access-control-allow-origin") == "https://crm.example.tw"

    def test_allows_configured_origins(self):
        app = _app(allowed_origins="https://a.example.tw, https://b.example.tw")
        response = self._preflight(app, "https://b.example.tw")
        assert response.headers.get("access-control-allow-origin") == "https://b.example.tw"

    def test_localhost_only_in_development(self):
        assert "access-control-allow-origin" not in self._preflight(_app(), "http://localhost:5173").headers
        dev = _app(app_env="development")
        assert "access-control-allow-origin" in self._preflight(dev, "http://localhost:5173").headers


# ---------------------------------------------------------------------------
# Domain error mapping
# ---------------------------------------------------------------------------


class TestGrowthErrorHandler:
    async def _render(self, exc):
        request = MagicMock()
        request.url.path = "/api/v1/test"
        response = await growth_error_handler(request, exc)
        return response.status_code, json.loads(response.body)

    async def test_rule_violation(self):
        status, body = await self._render(DomainRuleViolation(Reason.MONTHLY_LIMIT_REACHED))
        assert status == 400
        assert body == {"detail": "MONTHLY_LIMIT_REACHED", "reason": "MONTHLY_LIMIT_REACHED"}

    async def test_not_found_without_reason(self):
        status, body = await self._render(NotFoundError("Code not found"))
        assert status == 404
        assert body == {"detail": "Code not found", "reason": None}

    async def test_conflict(self):
        status, body = await self._render(ConflictError("Already referred", Reason.REFERRAL_EXISTS))
        assert status == 409
        assert body["reason"] == "REFERRAL_EXISTS"

    async def test_code_space_exhausted(self):
        status, _ = await self._render(CodeSpaceExhaustedError("No free code"))
        assert status == 503

    def test_registered_on_app(self):
        app = _app()

        async def boom():
            raise DomainRuleViolation(Reason.SELF_REFERRAL, "Cannot refer yourself")

        app.add_api_route("/boom", boom)
        response = TestClient(app, raise_server_exceptions=False).get("/boom")
        assert response.status_code == 400
        assert response.json() == {"detail": "Cannot refer yourself", "reason": "SELF_REFERRAL"}


# ---------------------------------------------------------------------------
# lifespan - startup and shutdown
# ---------------------------------------------------------------------------


class TestLifespan:
    async def test_warns_when_jwt_secret_missing(self):
        with ExitStack() as stack:
            mock_logger = _lifespan_patches(stack, _make_mock_settings(jwt_secret=""))
            async with lifespan(MagicMock()):
                pass
        assert "JWT_SECRET" in _warnings(mock_logger)

    async def test_warns_when_billing_secret_missing(self):
        with ExitStack() as stack:
            mock_logger = _lifespan_patches(stack, _make_mock_settings(billing_webhook_secret=""))
            async with lifespan(MagicMock()):
                pass
        assert "BILLING_WEBHOOK_SECRET" in _warnings(mock_logger)

    async def test_no_warnings_when_configured(self):
        with ExitStack() as stack:
            mock_logger = _lifespan_patches(stack, _make_mock_settings())
            async with lifespan(MagicMock()):
                pass
        mock_logger.warning.assert_not_called()

    async def test_initializes_sentry_when_configured(self):
        with ExitStack() as stack:
            _lifespan_patches(stack, _make_mock_settings(sentry_dsn="https://sentry.example/1"))
            mock_sentry_init = stack.enter_context(patch("sentry_sdk.init"))
            async with lifespan(MagicMock()):
                pass
        mock_sentry_init.assert_called_once()
        assert mock_sentry_init.call_args.kwargs["dsn"] == "https://sentry.example/1"

    async def test_skips_sentry_when_not_configured(self):
        with ExitStack() as stack:
            _lifespan_patches(stack, _make_mock_settings(sentry_dsn=""))
            mock_sentry_init = stack.enter_context(patch("sentry_sdk.init"))
            async with lifespan(MagicMock()):
                pass
        mock_sentry_init.assert_not_called()

    async def test_starts_and_cancels_trial_expiry_worker(self):
        task = MagicMock(spec=asyncio.Task)
        with ExitStack() as stack:
            _lifespan_patches(stack, _make_mock_settings())
            mock_create = stack.enter_context(patch("asyncio.create_task", return_value=task))
            mock_close = stack.enter_context(
                patch("growth.utils.redis_client.close_redis", new_callable=AsyncMock)
            )
            async with lifespan(MagicMock()):
                mock_create.assert_called_once()
                task.cancel.assert_not_called()
        task.cancel.assert_called()
        mock_close.assert_awaited_once()

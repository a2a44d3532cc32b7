"""
Campaign growth service - promoter referrals and trial-invite attribution.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from growth.config import get_settings
from growth.api.router import api_router
from growth.errors import GrowthError
from growth.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("growth")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


async def growth_error_handler(request: Request, exc: GrowthError) -> JSONResponse:
    """Map domain errors to {"detail", "reason"} with the error's HTTP status."""
    reason = exc.reason.value if exc.reason else None
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message, extra={"error_code": type(exc).__name__})
    else:
        logger.info(
            "%s on %s: %s", type(exc).__name__, request.url.path, exc.message,
            extra={"reason": reason},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "reason": reason},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Growth service starting up (env=%s)", settings.app_env)

    if not settings.jwt_secret:
        logger.warning(
            "JWT_SECRET not set - falling back to APP_SECRET_KEY. "
            "Set the platform's shared JWT secret for production."
        )
    if not settings.billing_webhook_secret:
        logger.warning("BILLING_WEBHOOK_SECRET not set - billing callbacks will be rejected.")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    from growth.workers.trial_expiry import run_trial_expiry
    worker_tasks.append(asyncio.create_task(run_trial_expiry()))
    logger.info("Trial expiry worker started")

    yield

    logger.info("Growth service shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    from growth.utils.redis_client import close_redis
    await close_redis()
    logger.info("Growth service shutdown complete")


def _allowed_origins(settings) -> list[str]:
    origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    if settings.app_env == "development":
        origins += ["http://localhost:3000", "http://localhost:5173"]
    origins.append(settings.app_base_url)
    return origins


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Campaign Growth",
        description="Promoter referral and trial-invite attribution",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(GrowthError, growth_error_handler)

    application.include_router(api_router)

    return application


app = create_app()

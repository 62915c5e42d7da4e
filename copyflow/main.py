"""
Copyflow - FastAPI Application
Webhook-driven copy generation runs with a durable run ledger
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from copyflow.config import EngineOptions, secret_value, settings
from copyflow.core.exceptions import ConfigurationError, SignatureError, ValidationError
from copyflow.database import SessionLocal, init_db
from copyflow.services.run_scheduler import HttpSelfInvoker, RunScheduler
from copyflow.services.workflow_engine import build_runner

from copyflow.api.routes import health, queue, webhooks
from copyflow.api.v1 import runs

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting %s...", settings.app_name)

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")

    options = EngineOptions.from_settings(settings)
    runner = build_runner(settings, options)
    app.state.runner = runner

    scheduler = None
    if settings.continuation_mode == "scheduler":
        scheduler = RunScheduler(SessionLocal, runner, options, poll_seconds=settings.sweep_interval_seconds)
        scheduler.start()
        app.state.run_scheduler = scheduler
        app.state.continuation = scheduler
        logger.info("Run scheduler started")
    elif settings.continuation_mode == "http":
        drain_url = f"{str(settings.public_base_url).rstrip('/')}/queues/generate-copy/drain"
        app.state.continuation = HttpSelfInvoker(
            drain_url, secret_value(settings.service_token), timeout=settings.self_invoke_timeout_seconds
        )
        logger.info("Drain continuation via %s", drain_url)
    else:
        app.state.continuation = None
        logger.warning("Drain continuation disabled; queued runs need an external drain trigger")

    logger.info(f"API running on {settings.app_env} environment")
    yield
    if scheduler is not None:
        await scheduler.stop()
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Webhook-driven copy generation workflow engine",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


@app.exception_handler(SignatureError)
async def signature_error_handler(request: Request, exc: SignatureError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = "Method not allowed" if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED else exc.detail
    return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(queue.router, prefix="/queues", tags=["Queue"])
app.include_router(health.router, prefix=settings.api_v1_prefix, tags=["Health"])
app.include_router(runs.router, prefix=f"{settings.api_v1_prefix}/runs", tags=["Runs"])

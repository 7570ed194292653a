"""FastAPI application factory and entry point.

Creates the application instance, registers middleware, builds the shared
:class:`~page_capture.capturer.orchestrator.Capturer` and mounts the capture
router.

Usage::

    # Development server (from project root)
    uvicorn page_capture.api.main:app --reload
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from page_capture.capturer.downloads import DownloadCoordinator
from page_capture.capturer.http_fetcher import Transport, build_client
from page_capture.capturer.local_downloads import LocalDownloadBackend
from page_capture.capturer.models import CaptureOptions
from page_capture.capturer.orchestrator import Capturer
from page_capture.capturer.router import router as capturer_router
from page_capture.config.settings import Settings, get_settings
from page_capture.core.logging_config import configure_logging

# ---------------------------------------------------------------------------
# Logging configuration, applied once at module import time so that log
# records emitted during app construction are captured correctly.
# The log level is re-applied inside create_app() after settings are loaded.
# ---------------------------------------------------------------------------

configure_logging("INFO")

logger = structlog.get_logger(__name__)


def build_capturer(settings: Settings) -> Capturer:
    """Build a capturer writing through the local download backend.

    Args:
        settings: Service settings (download root, transport, defaults).

    Returns:
        A capturer with a fresh session store and the pass-through agent.
    """
    client = build_client(user_agent=settings.user_agent, timeout=settings.transport_timeout)
    coordinator = DownloadCoordinator(LocalDownloadBackend(settings.download_root))
    return Capturer(
        transport=Transport(client),
        coordinator=coordinator,
        default_options=CaptureOptions.from_settings(settings),
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(capturer: Optional[Capturer] = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Args:
        capturer: Capturer to serve; built from the settings when omitted
            (tests pass their own).

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()

    # Re-apply logging configuration with the correct level from settings.
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description="Captures web pages and their resources into portable archives.",
        version="0.1.0",
        debug=settings.debug,
        redirect_slashes=False,
    )
    application.state.capturer = capturer if capturer is not None else build_capturer(settings)

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every incoming request and its response status + duration.

        Binds a unique ``request_id`` to the structlog context so that all
        log lines emitted while the command runs can be correlated.
        """
        request_id = str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn("request_complete", status_code=status_code, elapsed_ms=elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Routers -------------------------------------------------------------

    application.include_router(capturer_router, prefix="/capturer", tags=["capturer"])

    # ---- Lifecycle events -------------------------------------------------

    @application.on_event("startup")
    async def on_startup() -> None:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            download_root=str(settings.download_root),
            log_level=settings.log_level,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        """Close the shared transport client."""
        await application.state.capturer.transport.aclose()
        logger.info("application_shutdown")

    # ---- Health endpoint --------------------------------------------------

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status."""
        return JSONResponse({"status": "ok"})

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance passed to Uvicorn."""

"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from finsight.api.errors import register_exception_handlers
from finsight.api.middleware import RequestLoggingMiddleware
from finsight.api.routers import api_router
from finsight.config.settings import Settings, get_settings
from finsight.container import Container, build_container
from finsight.infrastructure.logging.logger import setup_logging

logger = logging.getLogger(__name__)


def _validate_startup_config(settings: Settings) -> None:
    """Warn about configuration that will make requests fail."""
    if not settings.anthropic_api_key:
        logger.warning("anthropic_api_key is empty; code generation will fail")
    if not settings.firebase_project_id:
        logger.warning("firebase_project_id is empty; token audience is not checked")
    if settings.storage_backend == "memory":
        logger.warning("Using the in-memory document store; data is lost on restart")


def create_app(settings: Settings | None = None, container: Container | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Explicit settings; defaults to the environment
        container: Pre-built components (tests); built at startup otherwise
    """
    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Startup and shutdown lifecycle."""
        logger.info("Starting %s %s", settings.app_name, settings.app_version)
        _validate_startup_config(settings)
        app.state.container = container or build_container(settings)
        await app.state.container.startup()
        yield
        logger.info("Shutting down %s", settings.app_name)
        await app.state.container.shutdown()

    app = FastAPI(
        title=settings.app_name,
        description="Natural-language financial analysis: enrichment, code generation and sandboxed execution",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials="*" not in settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        silence_noisy_loggers=True,
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    main()

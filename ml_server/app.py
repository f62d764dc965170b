"""
FastAPI application for the ML inference server.

Both transports (HTTP request/response and the WebSocket stream) share one
SessionState and funnel every inference through its Dispatcher.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ml_server.common.logging import init_structured_logging, install_fastapi_request_id_middleware
from ml_server.config import APP_NAME, APP_VERSION, Settings, load_settings, validate_config
from ml_server.registry import ExecutorRegistry
from ml_server.routes import inference, status, stream
from ml_server.state import SessionState

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, registry: Optional[ExecutorRegistry] = None) -> FastAPI:
    """
    Build the application.

    `registry` lets callers swap executor implementations; by default one of
    each reference executor is built from settings.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown events."""
        logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

        config_errors = validate_config(settings)
        if config_errors:
            logger.error("Configuration errors detected:")
            for error in config_errors:
                logger.error(f"  - {error}")
            logger.warning("Service starting with configuration issues - some features may not work")
        else:
            logger.info("Configuration validated successfully")

        yield

        logger.info(f"Shutting down {APP_NAME}")

    app = FastAPI(
        title=APP_NAME,
        version=APP_VERSION,
        description="Typed model dispatch over HTTP and WebSocket",
        lifespan=lifespan,
    )
    app.state.session = SessionState(settings, registry)

    app.include_router(status.router, tags=["status"])
    app.include_router(inference.router, prefix="/api", tags=["inference"])
    app.include_router(stream.router, tags=["stream"])

    install_fastapi_request_id_middleware(app, service=settings.service_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )
    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    init_structured_logging(service=settings.service_name, level=settings.log_level)
    logger.info(f"ML Server listening on {settings.host}:{settings.port}")
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()

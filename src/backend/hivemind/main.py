"""
Hivemind: FastAPI Backend
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from hivemind.agent.orchestrator import Hivemind
from hivemind.api import health, query
from hivemind.config import settings
from hivemind.services.model_client import ModelInvoker

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _mask(val: str) -> str:
    if not val:
        return "(empty)"
    if len(val) <= 8:
        return "***"
    return val[:4] + "..." + val[-4:]


async def _log_startup(invoker: ModelInvoker) -> None:
    logger.info("=== Hivemind Backend Starting ===")
    logger.info(f"  model_base_url    : {invoker.base_url}")
    logger.info(f"  model_id          : {invoker.model_id}")
    logger.info(f"  model_api_key     : {_mask(invoker.api_key)}")
    logger.info(f"  max_output_tokens : {invoker.max_tokens}")
    logger.info(f"  request_timeout   : {invoker.request_timeout}s")
    logger.info(f"  query_timeout     : {settings.query_timeout_seconds}s")
    logger.info(f"  cors_origins      : {settings.cors_origins}")

    if await invoker.check_availability():
        logger.info(f"Model endpoint AVAILABLE ({invoker.base_url})")
    else:
        logger.warning(f"Model endpoint NOT AVAILABLE ({invoker.base_url}) -- queries will return errors")


def create_app(invoker: Optional[ModelInvoker] = None) -> FastAPI:
    """
    Build the application.

    Args:
        invoker: Shared model client; a default one is created at startup if omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        shared = invoker or ModelInvoker()
        app.state.invoker = shared
        app.state.hivemind = Hivemind(shared)
        await _log_startup(shared)
        yield
        await shared.aclose()
        logger.info("Hivemind backend stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Parallel multi-agent query answering with master evaluation",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Authorization"],
        expose_headers=["Content-Length"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request format", "details": str(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    # Routes
    app.include_router(health.router, tags=["health"])
    app.include_router(query.router, tags=["query"])

    return app


app = create_app()

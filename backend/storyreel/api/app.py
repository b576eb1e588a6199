"""FastAPI application setup with lifespan and exception handlers."""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storyreel import __version__, validate_dependencies
from storyreel.api.routes import router
from storyreel.config import get_settings
from storyreel.context import PipelineContext, open_context
from storyreel.errors import ChatNotFoundError, InsufficientInputError, StoryreelError
from storyreel.services.storage import LocalArtifactStore

logger = logging.getLogger(__name__)


def create_app(ctx: Optional[PipelineContext] = None) -> FastAPI:
    """Build the API application.

    Args:
        ctx: Pre-built pipeline context. When omitted, the lifespan opens a
            production context from settings and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Startup:
            - Validate system dependencies (ffmpeg)
            - Open the pipeline context (database schema, clients)

        Shutdown:
            - Close clients and database connections
        """
        async with AsyncExitStack() as stack:
            if ctx is None:
                logger.info("Starting Storyreel API...")
                settings = get_settings()
                validate_dependencies(settings.transcode.ffmpeg_binary)
                app.state.ctx = await stack.enter_async_context(open_context(settings))
            else:
                app.state.ctx = ctx
            logger.info("API startup complete")

            yield

            logger.info("Shutting down Storyreel API...")
        logger.info("API shutdown complete")

    app = FastAPI(
        title="Storyreel API",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    # Serve the local artifact store so its public URLs resolve
    settings = ctx.settings if ctx is not None else get_settings()
    if ctx is not None and isinstance(ctx.artifacts, LocalArtifactStore):
        artifact_root = ctx.artifacts.root
    elif settings.storage.artifact_backend == "local":
        artifact_root = settings.storage.local_root
    else:
        artifact_root = None
    if artifact_root is not None:
        app.mount("/artifacts", StaticFiles(directory=str(artifact_root), check_dir=False), name="artifacts")

    @app.exception_handler(ChatNotFoundError)
    async def chat_not_found_handler(request: Request, exc: ChatNotFoundError):
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(InsufficientInputError)
    async def insufficient_input_handler(request: Request, exc: InsufficientInputError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(StoryreelError)
    async def pipeline_error_handler(request: Request, exc: StoryreelError):
        logger.error(
            f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}"
        )
        return JSONResponse(
            status_code=502,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc),
            }
        )

    return app


app = create_app()

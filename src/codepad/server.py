"""FastAPI application hosting one chat session."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import router as api_router
from .config import Settings, settings as default_settings
from .errors import ConfigurationError, ConversationError, SessionBusyError
from .session.chat import ChatSession
from .utils.logging_setup import setup_logging


logger = structlog.get_logger(__name__)


def create_app(session: Optional[ChatSession] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI app; the lifespan opens and closes the session."""
    settings = settings or (session.settings if session else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        chat_session = session or ChatSession(settings)
        await chat_session.open()
        app.state.session = chat_session
        logger.info("chat server started", provider=chat_session.selection.provider_id)
        try:
            yield
        finally:
            logger.info("shutting down chat server")
            await chat_session.close()
            app.state.session = None

    app = FastAPI(
        title="Codepad Chat Server",
        description="Streaming chat over multiple LLM providers",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionBusyError)
    async def busy_handler(_request: Request, exc: SessionBusyError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(_request: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(ConversationError)
    async def conversation_handler(_request: Request, exc: ConversationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    app.include_router(api_router)

    @app.get("/health")
    async def health():
        chat_session: Optional[ChatSession] = getattr(app.state, "session", None)
        return {
            "status": "healthy",
            "version": __version__,
            "session": bool(chat_session),
            "busy": bool(chat_session and chat_session.controller.busy),
        }

    return app


async def run_server(host: Optional[str] = None, port: Optional[int] = None, settings: Optional[Settings] = None) -> None:
    settings = settings or default_settings
    setup_logging()

    host = host or settings.server.host
    port = port or settings.server.port
    logger.info("starting chat server", host=host, port=port, env=settings.env)

    config = uvicorn.Config(
        create_app(settings=settings),
        host=host,
        port=port,
        log_level=settings.logging.level.lower(),
        access_log=True,
    )
    await uvicorn.Server(config).serve()


def main() -> None:
    """Main entry point for the server."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()

"""pairchat backend application.

This is the main entry point for the pairchat backend service, a real-time
two-party messaging engine.

Modules:
    - chat: WebSocket live channel, rooms, presence and message delivery
    - chat.history_router: HTTP pull path for chats and message history
    - auth: Bearer credential verification, profile and user directory
    - store: DuckDB persistence behind a time-bounded async gateway
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pairchat.auth.router import router as auth_router
from pairchat.auth.service import TokenService
from pairchat.chat.history_router import router as history_router
from pairchat.chat.manager import ChatManager
from pairchat.chat.router import router as chat_router
from pairchat.config import AppSettings, get_config
from pairchat.errors import ChatError, InvalidContentError
from pairchat.store import ChatStore, StoreGateway

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in ("httpx", "httpcore", "websockets"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppSettings = app.state.settings

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in pairchat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    logger.info(
        "Server running on http://%s:%s (store=%s)",
        config.server.host, config.server.port, config.store.db_path,
    )

    yield  # Application runs here

    # Shutdown
    app.state.store.close()
    logger.info("Application shutdown complete")


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        {"error": exc.message, "code": exc.code},
        status_code=exc.status_code,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed bodies and parameters like any other client error."""
    problems = "; ".join(
        "{}: {}".format(
            ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "body",
            error.get("msg", "invalid"),
        )
        for error in exc.errors()
    )
    return await chat_error_handler(
        request, InvalidContentError(f"Malformed request ({problems})")
    )


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the application and its engine.

    Args:
        settings: Explicit settings (tests); defaults to ``get_config()``.

    Returns:
        A FastAPI app with ``settings``, ``store`` and ``chat_manager`` on
        ``app.state``. The database is not opened until first use.
    """
    settings = settings or get_config()

    store = ChatStore(settings.store.db_path)
    gateway = StoreGateway(store, timeout_seconds=settings.store.timeout_seconds)
    tokens = TokenService(
        settings.secrets.jwt.secret_key,
        algorithm=settings.secrets.jwt.algorithm,
        expire_minutes=settings.auth.token_expire_minutes,
    )

    app = FastAPI(
        title="pairchat API",
        description="Real-time two-party messaging with presence and seen receipts",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.chat_manager = ChatManager(
        gateway,
        tokens,
        settings.messages,
        send_timeout=settings.server.send_timeout_seconds,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ChatError, chat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Register all routers
    app.include_router(chat_router)
    app.include_router(history_router)
    app.include_router(auth_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()

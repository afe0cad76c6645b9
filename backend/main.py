"""FastAPI application entry point.

Startup sequence: read settings → configure logging → build tool registry →
build model gateway → create orchestrator → open session manager.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from backend.agent.agent import build_registry, create_agent
from backend.agent.registry import ToolRegistry
from backend.api.hub import router as hub_router
from backend.api.routes import router
from backend.api.schemas import ErrorResponse
from backend.core.config import API_VERSION, Settings
from backend.core.llm_adapter import ModelGateway, build_gateway
from backend.core.observability import configure_logging
from backend.core.session_manager import SessionManager

load_dotenv()

logger = structlog.get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    gateway: ModelGateway | None = None,
    registry: ToolRegistry | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration; read from the environment if omitted.
        gateway: Model gateway to use instead of building one from settings.
        registry: Tool registry to use instead of the default financial tools.
    """
    cfg = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        configure_logging(cfg)
        logger.info("startup.begin", backend=cfg.llm_backend, fallback=cfg.llm_fallback_backend)

        app.state.settings = cfg
        app.state.registry = registry if registry is not None else build_registry()
        app.state.sessions = SessionManager()
        app.state.turn_tasks = set()

        # Model gateway (may fail if provider keys are missing)
        app.state.gateway = gateway
        app.state.orchestrator = None
        try:
            if app.state.gateway is None:
                app.state.gateway = build_gateway(cfg)
            app.state.orchestrator = create_agent(app.state.gateway, app.state.registry, cfg)
            logger.info("startup.agent_created", healthy=app.state.gateway.is_healthy())
        except Exception as e:
            logger.error("startup.agent_failed", error=str(e),
                         hint="Set CEREBRAS_API_KEY or GROQ_API_KEY in .env")

        logger.info("startup.complete")
        yield

        pending = set(app.state.turn_tasks)
        if pending:
            logger.info("shutdown.waiting_for_turns", count=len(pending))
            await asyncio.wait(pending, timeout=cfg.llm_timeout)
        logger.info("shutdown.complete")

    app = FastAPI(
        title="Financial ChatBot API",
        description="Financial assistant with LLM tool calling and a real-time chat hub",
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        logger.warning("request.invalid", path=request.url.path, errors=len(details))
        body = ErrorResponse(error="Invalid request", details=details)
        return JSONResponse(status_code=400, content=body.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("request.unhandled", path=request.url.path)
        body = ErrorResponse(error="An error occurred while processing your request.", details=str(exc))
        return JSONResponse(status_code=500, content=body.model_dump())

    app.include_router(router)
    app.include_router(hub_router)
    return app


app = create_app()

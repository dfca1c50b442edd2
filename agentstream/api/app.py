"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from agentstream import __version__
from agentstream.agent.runner import AgentRunner
from agentstream.api.routes import router as core_router
from agentstream.core.config.loader import load_config


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load Config → AgentRunner. Nothing else is shared between requests."""
    config = load_config()
    app.state.config = config
    app.state.runner = AgentRunner(config)
    logger.info(
        f"agentstream API started — model: {config.llm.model}, "
        f"decision: {config.agent.decision}"
    )
    yield
    logger.info("agentstream API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="agentstream API",
        description="Streaming chat backend with a web-search ReAct agent",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(core_router)
    return app


app = create_app()

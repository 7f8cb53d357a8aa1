"""
FastAPI application factory for SurveyLogic.

Creates and configures the FastAPI app, compiles the page evaluation
graph and mounts the routes.

Run with:
    uvicorn surveylogic.api.app:app --reload
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from surveylogic.api.routes import configure_routes, router
from surveylogic.engine.graph import get_compiled_graph

# Load environment variables from .env
load_dotenv()

# Logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _is_truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    application = FastAPI(
        title="SurveyLogic",
        description="Conditional-logic evaluation engine for dynamic surveys",
        version="0.1.0",
    )

    # CORS: allow all origins in development
    allowed_origins = os.getenv("CORS_ALLOWED_ORIGINS", "*").split(",")
    application.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Compile the evaluation graph once, shared across all requests
    graph = get_compiled_graph()
    logger.info("Page evaluation graph compiled successfully")

    validate_on_evaluate = _is_truthy(os.getenv("VALIDATE_RULES_ON_EVALUATE"), default=False)
    if validate_on_evaluate:
        logger.info("Rule validation enabled on /evaluate")

    configure_routes(graph, validate_on_evaluate=validate_on_evaluate)
    application.include_router(router, prefix="/api")

    return application


# Create the app instance (used by uvicorn)
app = create_app()

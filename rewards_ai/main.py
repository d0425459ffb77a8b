"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rewards_ai.api.routes import router as api_router
from rewards_ai.config import settings
from rewards_ai.core.exceptions import RAGError
from rewards_ai.core.gateway import ModelGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    app.state.gateway = ModelGateway()
    if not app.state.gateway.configured:
        logger.warning("AI_GATEWAY_API_KEY is not set; chat requests will fail")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await app.state.gateway.aclose()


async def rag_error_handler(request: Request, exc: RAGError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.user_message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"Invalid request: {detail}"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="AI chat backend for the credit card rewards dashboard.",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RAGError, rag_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include API routes
    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rewards_ai.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )

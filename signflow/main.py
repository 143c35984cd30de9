"""Main application entry point for the SignFlow API."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signflow.api.signature_requests import signature_request_router
from signflow.api.signing import signing_router, verification_router
from signflow.config.settings import get_settings
from signflow.database import DatabaseConfig, check_connection, dispose_engine, get_engine, init_db
from signflow.infrastructure.storage import get_storage_service
from signflow.utils.errors import APIError


# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database on startup and release it on shutdown."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")

    config = DatabaseConfig.from_env()
    get_engine(config)
    if config.is_sqlite:
        # Local runs skip Alembic
        init_db(config)
    logger.info(f"Signing links point at {settings.public_base_url}")

    yield

    dispose_engine()
    logger.info("SignFlow API stopped")


# =============================================================================
# Exception Handlers
# =============================================================================

async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle API errors and return structured responses."""
    response = exc.to_response()
    return JSONResponse(
        status_code=response.status_code,
        content=response.to_dict(),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Convert request validation errors to the structured error shape."""
    field_errors = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error["loc"] if x != "body")
        field_errors.append({
            "field": loc,
            "message": error["msg"],
            "code": error["type"],
        })

    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "message": "Request validation failed",
                "code": "validation_error",
                "field_errors": field_errors,
            }
        },
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Multi-party electronic signature workflows: requests, ordered "
            "signing, signature capture, reminders and verification."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(signature_request_router)
    app.include_router(signing_router)
    app.include_router(verification_router)

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unexpected error occurred")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "An unexpected error occurred",
                    "code": "internal_error",
                }
            },
        )

    @app.get("/health", tags=["Health"])
    def health_check() -> dict:
        """Report database and document storage health."""
        database_ok = check_connection()
        storage = get_storage_service().health_check()
        healthy = database_ok and storage.status == "healthy"
        return {
            "status": "healthy" if healthy else "degraded",
            "version": settings.app_version,
            "database": "healthy" if database_ok else "unhealthy",
            "storage": storage.model_dump(mode="json"),
        }

    return app


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()


# =============================================================================
# Development Server
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "signflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )

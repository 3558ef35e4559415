"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from awash.api.routes import router
from awash.config import get_settings
from awash.database.session import close_db, init_db
from awash.errors import AllProvidersFailedError, AwashError, PaymentRequiredError, RateLimitError
from awash.llm.router import get_router


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    if settings.environment == "development":
        await init_db()
        logger.info("Database initialized")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await get_router().close()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Awash API - AI application generation backend",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


def error_status(error: AwashError) -> int:
    """HTTP status for an error; exhausted providers report why the last attempt failed."""
    if isinstance(error, AllProvidersFailedError):
        if isinstance(error.last_error, RateLimitError):
            return 429
        if isinstance(error.last_error, PaymentRequiredError):
            return 402
    return error.status_code


@app.exception_handler(AwashError)
async def awash_error_handler(request: Request, exc: AwashError) -> JSONResponse:
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.message, "type": exc.error_type},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(exc) or "Internal server error", "type": "internal_error"},
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "awash.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )

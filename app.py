import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError

from config import LOG_LEVEL, get_osrm_base_url
from core.api import error_response
from core.http.session import cleanup_session
from db import db_manager
from trips.api.route_matching import router as route_matching_router

# Basic logging configuration
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Initialize Beanie on startup and release connections on shutdown."""
    try:
        await db_manager.init_beanie()
        logger.info("Beanie ODM initialized successfully.")
    except Exception as e:
        logger.critical(
            "CRITICAL: Failed to initialize application during startup: %s",
            str(e),
            exc_info=True,
        )
        raise

    if not get_osrm_base_url():
        logger.warning(
            "OSRM_BASE_URL not set. Match requests will fail with OSRM_UNAVAILABLE.",
        )
    logger.info("Application startup completed successfully.")

    yield

    await cleanup_session()
    await db_manager.cleanup_connections()
    logger.info("Application shutdown completed successfully")


# Initialize FastAPI App
app = FastAPI(title="Trip Route Matcher", lifespan=lifespan)

app.include_router(route_matching_router)


# --- Global Exception Handlers ---
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies with the shared error shape."""
    logger.warning("Invalid request to %s: %s", request.url.path, exc.errors())
    return error_response(
        "Invalid request body",
        "INVALID_REQUEST",
        status.HTTP_400_BAD_REQUEST,
    )


# --- Main Execution Block ---
if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=port,
        log_level=LOG_LEVEL.lower(),
    )

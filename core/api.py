"""API utilities for FastAPI route handling."""

import functools
import logging
from collections.abc import Callable

from fastapi import status
from fastapi.responses import JSONResponse

from core.exceptions import RouteMatchingException


def error_response(
    message: str,
    code: str,
    status_code: int,
) -> JSONResponse:
    """Build the structured error body shared by every endpoint."""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "code": code},
    )


def api_route(logger: logging.Logger):
    """
    Decorator for FastAPI endpoints that provides standardized error handling.

    Wraps async endpoint functions with try/except to:
    - Map application exceptions to their code and HTTP status
    - Log and convert other exceptions to a 500 INTERNAL_ERROR response

    Usage:
        @router.post("/api/example")
        @api_route(logger)
        async def my_endpoint():
            # ... business logic ...
            return result
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except RouteMatchingException as e:
                if e.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
                    logger.exception(
                        "%s in %s: %s",
                        e.code,
                        func.__name__,
                        e.message,
                    )
                else:
                    logger.warning(
                        "%s in %s: %s",
                        e.code,
                        func.__name__,
                        e.message,
                    )
                return error_response(e.message, e.code, e.status_code)
            except Exception as e:
                # Generic catch-all for unexpected errors
                logger.exception("Unexpected error in %s", func.__name__)
                return error_response(
                    str(e) or "Internal error",
                    "INTERNAL_ERROR",
                    status.HTTP_500_INTERNAL_SERVER_ERROR,
                )

        return wrapper

    return decorator

"""HTTP client utilities and session management."""

from core.http.osrm import OsrmClient
from core.http.request import request_json
from core.http.session import cleanup_session, get_session

__all__ = [
    "OsrmClient",
    "cleanup_session",
    "get_session",
    "request_json",
]

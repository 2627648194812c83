"""Centralized configuration for environment variables and external services.

This module is the single source of truth for configuration used across the
application. Import constants from here rather than calling os.getenv directly
in multiple places.

NOTE: The OSRM address is read at call time through get_osrm_base_url() so
that a missing engine can be reported per request instead of failing import.
"""

from __future__ import annotations

import os
from typing import Final

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# --- Logging ---
LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO").upper()


# --- OSRM Map Matching Engine ---
OSRM_PROFILE: Final[str] = os.getenv("OSRM_PROFILE", "driving")
OSRM_TIMEOUT_SECONDS: Final[float] = _env_float("OSRM_TIMEOUT_SECONDS", 30.0)
OSRM_MAX_TRACE_POINTS: Final[int] = _env_int("OSRM_MAX_TRACE_POINTS", 100)
OSRM_CONNECTION_LIMIT: Final[int] = _env_int("OSRM_CONNECTION_LIMIT", 10)

# GPS accuracy is used as the per-point search radius (meters)
OSRM_DEFAULT_RADIUS_M: Final[float] = 30.0
OSRM_MIN_RADIUS_M: Final[float] = 5.0
OSRM_MAX_RADIUS_M: Final[float] = 100.0


def get_osrm_base_url() -> str | None:
    """Return the OSRM base URL without a trailing slash, or None if unset."""
    value = os.getenv("OSRM_BASE_URL", "").strip()
    if not value:
        return None
    return value.rstrip("/")


# --- Matching policy ---
MAX_MATCH_ATTEMPTS: Final[int] = 3
MIN_MATCH_POINTS: Final[int] = 3
POINT_FETCH_TIMEOUT_SECONDS: Final[float] = _env_float(
    "POINT_FETCH_TIMEOUT_SECONDS",
    10.0,
)
MATCH_STALE_PROCESSING_SECONDS: Final[int] = _env_int(
    "MATCH_STALE_PROCESSING_SECONDS",
    600,
)

# Quality gates applied to engine results
MATCH_MIN_MATCHED_RATIO: Final[float] = 0.5
MATCH_MIN_CONFIDENCE: Final[float] = 0.05
MATCH_LOW_CONFIDENCE_MATCHED_RATIO: Final[float] = 0.8
MATCH_MAX_DISTANCE_RATIO: Final[float] = 3.0


__all__ = [
    "LOG_LEVEL",
    "MATCH_LOW_CONFIDENCE_MATCHED_RATIO",
    "MATCH_MAX_DISTANCE_RATIO",
    "MATCH_MIN_CONFIDENCE",
    "MATCH_MIN_MATCHED_RATIO",
    "MATCH_STALE_PROCESSING_SECONDS",
    "MAX_MATCH_ATTEMPTS",
    "MIN_MATCH_POINTS",
    "OSRM_CONNECTION_LIMIT",
    "OSRM_DEFAULT_RADIUS_M",
    "OSRM_MAX_RADIUS_M",
    "OSRM_MAX_TRACE_POINTS",
    "OSRM_MIN_RADIUS_M",
    "OSRM_PROFILE",
    "OSRM_TIMEOUT_SECONDS",
    "POINT_FETCH_TIMEOUT_SECONDS",
    "get_osrm_base_url",
]

"""Global constants for the core package.

This module contains shared constants used across the application core.
"""

from typing import Final

# HTTP Client Constants
HTTP_TIMEOUT_CONNECT: Final[float] = 10.0
USER_AGENT: Final[str] = "TripRouteMatcher/1.0"

# Distance Conversion
METERS_PER_KM: Final[float] = 1000.0

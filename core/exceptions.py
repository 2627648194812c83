"""
Centralized exception hierarchy for route matching errors.

Every exception carries a stable machine-readable ``code`` and the HTTP
status it maps to, so the API layer can build structured error responses
without knowing about individual failure cases.
"""

from fastapi import status


class RouteMatchingError(Exception):
    """Base exception for all application-specific errors."""

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(RouteMatchingError):
    """Exception raised when request validation fails."""

    code = "INVALID_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST


class TripNotFoundError(RouteMatchingError):
    """Exception raised when a trip id has no matching record."""

    code = "TRIP_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class MaxAttemptsReachedError(RouteMatchingError):
    """Exception raised when a trip has used its whole matching budget."""

    code = "MAX_ATTEMPTS_REACHED"
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientPointsError(RouteMatchingError):
    """Exception raised when a trip has too few GPS points to match."""

    code = "INSUFFICIENT_POINTS"
    status_code = status.HTTP_400_BAD_REQUEST


class MatchInProgressError(RouteMatchingError):
    """Exception raised when another attempt currently holds the trip."""

    code = "MATCH_IN_PROGRESS"
    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(RouteMatchingError):
    """Exception raised when service calls fail."""

    code = "OSRM_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class EngineUnavailableError(ExternalServiceError):
    """Exception raised when the matching engine is unconfigured or unreachable."""


class MatchPersistenceError(RouteMatchingError):
    """Exception raised when a match outcome could not be stored."""


RouteMatchingException = RouteMatchingError
ValidationException = ValidationError
ExternalServiceException = ExternalServiceError

"""Custom exceptions for the application.

Provides standardized error handling across the application. Every
exception carries the HTTP status it maps to, so routers can simply let
it propagate to the global handler in main.py.
"""
from typing import Optional
from fastapi import status


class AppException(Exception):
    """Base exception for application errors."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[dict] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


# ==================== Error kinds ====================

class ValidationFailedError(AppException):
    """Malformed or out-of-policy input."""

    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_FAILED",
            details={"field": field} if field else {}
        )


class AuthorizationError(AppException):
    """Caller lacks the relationship required for the operation."""

    http_status = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden", code: str = "FORBIDDEN"):
        super().__init__(message=message, code=code)


class NotFoundError(AppException):
    """An identifier did not resolve."""

    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(AppException):
    """The request conflicts with current state or policy."""

    http_status = status.HTTP_409_CONFLICT


class ServiceUnavailableError(AppException):
    """A dependency of the operation is not available."""

    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


# ==================== Support circles ====================

class CircleNotFoundError(NotFoundError):
    """Raised when a circle is not found (or is private to the caller)."""

    def __init__(self, circle_id: Optional[str] = None):
        super().__init__(
            message="Support circle not found",
            code="CIRCLE_NOT_FOUND",
            details={"circle_id": circle_id} if circle_id else {}
        )


class CircleNotActiveError(ConflictError):
    """Raised when joining a circle that has ended or was cancelled."""

    def __init__(self, circle_id: str):
        super().__init__(
            message="Circle is not active",
            code="CIRCLE_NOT_ACTIVE",
            details={"circle_id": circle_id}
        )


class CircleFullError(ConflictError):
    """Raised when a circle is at capacity."""

    def __init__(self, circle_id: str):
        super().__init__(
            message="Circle is full",
            code="CIRCLE_FULL",
            details={"circle_id": circle_id}
        )


class CircleQuotaExceededError(ConflictError):
    """Raised when a regular user already hosts an open circle."""

    def __init__(self, existing_circle_id: str):
        super().__init__(
            message=(
                "You can only create one active support circle at a time. "
                "Please end your existing circle first."
            ),
            code="CIRCLE_QUOTA_EXCEEDED",
            details={"existing_circle_id": existing_circle_id}
        )


class InvalidJoinCodeError(ValidationFailedError):
    """Raised for a join code that does not match (no existence leak)."""

    def __init__(self, message: str = "Invalid join code. Please check the code and try again."):
        super().__init__(message=message, field="joinCode")
        self.code = "INVALID_JOIN_CODE"


class JoinCodeExhaustedError(ServiceUnavailableError):
    """Raised when no unique join code was found within the retry budget.

    Signals systemic contention rather than a user mistake.
    """

    def __init__(self, attempts: int):
        super().__init__(
            message="Failed to generate unique join code. Please try again.",
            code="JOIN_CODE_EXHAUSTED",
            details={"attempts": attempts}
        )


class NotCircleHostError(AuthorizationError):
    """Raised when a host-only action is attempted by someone else."""

    def __init__(self, message: str = "Only the circle host can perform this action"):
        super().__init__(message=message, code="NOT_CIRCLE_HOST")


# ==================== Game sessions ====================

class GameSessionNotFoundError(NotFoundError):
    """Raised when a game session is not found."""

    def __init__(self, session_id: Optional[str] = None, message: str = "Game session not found"):
        super().__init__(
            message=message,
            code="GAME_SESSION_NOT_FOUND",
            details={"session_id": session_id} if session_id else {}
        )


class GameTypeMismatchError(ConflictError):
    """Raised when the requested game type differs from the circle's."""

    def __init__(self, requested: str, configured: str):
        super().__init__(
            message="Game type does not match room configuration",
            code="GAME_TYPE_MISMATCH",
            details={"requested": requested, "configured": configured}
        )


class GameSessionEndedError(ConflictError):
    """Raised when mutating a session that has already ended."""

    def __init__(self, session_id: str):
        super().__init__(
            message="Game session has ended",
            code="GAME_SESSION_ENDED",
            details={"session_id": session_id}
        )


class PlayerCountError(ConflictError):
    """Raised when a session is started with too few or too many players."""

    def __init__(self, game_type: str, players: int, min_players: int, max_players: int):
        super().__init__(
            message=f"This game needs {min_players}-{max_players} players",
            code="INVALID_PLAYER_COUNT",
            details={
                "game_type": game_type,
                "players": players,
                "min_players": min_players,
                "max_players": max_players,
            }
        )


class NotGameHostError(AuthorizationError):
    """Raised when a host-only game action is attempted by someone else."""

    def __init__(self, message: str = "Only the host can perform this action"):
        super().__init__(message=message, code="NOT_GAME_HOST")


class NotGamePlayerError(AuthorizationError):
    """Raised when a non-player tries to act in a session."""

    def __init__(self, message: str = "You are not a player in this game"):
        super().__init__(message=message, code="NOT_GAME_PLAYER")


class InvalidRoleAssignmentError(ValidationFailedError):
    """Raised when a role map violates a game's own rules."""

    def __init__(self, message: str):
        super().__init__(message=message, field="roles")
        self.code = "INVALID_ROLE_ASSIGNMENT"


# ==================== Audio transport ====================

class AudioNotConfiguredError(ServiceUnavailableError):
    """Raised when audio credentials cannot be issued."""

    def __init__(self):
        super().__init__(
            message=(
                "Voice is not configured yet. Please add AUDIO_APP_ID and "
                "AUDIO_APP_CERTIFICATE to your .env file."
            ),
            code="AUDIO_NOT_CONFIGURED"
        )


# ==================== Storage ====================

class StorageBusyError(ServiceUnavailableError):
    """Raised when the database stayed locked through every retry."""

    def __init__(self, operation: str):
        super().__init__(
            message="Server is busy, please try again shortly",
            code="STORAGE_BUSY",
            details={"operation": operation}
        )

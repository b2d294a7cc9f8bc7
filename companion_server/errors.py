"""
Error taxonomy for the companion API
Every error carries a stable machine-readable code and an HTTP status
"""
from typing import Any


class CompanionError(Exception):
    """Base class for errors surfaced to companion clients"""
    code = "INTERNAL_ERROR"
    status = 500
    template = "Internal error"

    def __init__(self, value: Any = None, message: str = None):
        self.value = value
        if message is None:
            message = self.template % (value,) if "%s" in self.template else self.template
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


# ============================================================
# AUTHORIZATION
# ============================================================

class AuthorizationError(CompanionError):
    status = 403


class AuthorizationDisabledError(AuthorizationError):
    code = "AUTHORIZATION_DISABLED"
    template = "Companion authorization is disabled"


class AuthorizationDeniedError(AuthorizationError):
    code = "AUTHORIZATION_DENIED"
    template = "Companion authorization was denied"


class AuthorizationInvalidError(AuthorizationError):
    code = "AUTHORIZATION_INVALID"
    status = 400
    template = "Authorization code is invalid"


class AuthorizationTimeoutError(AuthorizationError):
    code = "AUTHORIZATION_TIMEOUT"
    status = 504
    template = "Timed out waiting for an authorization code"


class UnauthenticatedError(CompanionError):
    code = "UNAUTHENTICATED"
    status = 401
    template = "A valid token is required"


# ============================================================
# VALIDATION
# ============================================================

class ValidationError(CompanionError):
    status = 400


class InvalidBodyError(ValidationError):
    code = "INVALID_BODY"
    template = "Request body is invalid"


class InvalidCommandError(ValidationError):
    code = "INVALID_COMMAND"
    template = "Command '%s' is invalid"


class InvalidVolumeError(ValidationError):
    code = "INVALID_VOLUME"
    template = "Volume '%s' is invalid"


class InvalidRepeatModeError(ValidationError):
    code = "INVALID_REPEAT_MODE"
    template = "Repeat mode '%s' is invalid"


# ============================================================
# MEDIA SURFACE AVAILABILITY
# ============================================================

class UnavailableError(CompanionError):
    status = 503


class YtmUnavailableError(UnavailableError):
    code = "YTM_UNAVAILABLE"
    template = "The player is not available"


class YtmResultTimeoutError(UnavailableError):
    code = "YTM_RESULT_TIMEOUT"
    status = 504
    template = "The player did not answer in time"


# ============================================================
# RATE LIMITING
# ============================================================

class RateLimitError(CompanionError):
    code = "RATE_LIMITED"
    status = 429

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(retry_after, f"Rate limit exceeded, retry in {self.retry_after_seconds} seconds")

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds, rounded up, suitable for a Retry-After header"""
        seconds = int(self.retry_after)
        return seconds + 1 if self.retry_after > seconds else max(seconds, 1)


class RealtimeUnauthorizedError(UnauthenticatedError):
    code = "UNAUTHORIZED"
    template = "A valid token is required to join the realtime channel"

from typing import Optional

RATE_LIMIT_MESSAGE = (
    "The AI service is receiving too many requests right now. "
    "Please wait a minute and try again."
)
GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

_RATE_LIMIT_MARKERS = ("RESOURCE_EXHAUSTED", "429")


class AgriSmartError(Exception):
    """Base class for errors raised by AgriSmart's service wrappers."""


class AIServiceError(AgriSmartError):
    """The generative model call failed or returned an unusable answer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(AgriSmartError):
    pass


class IdentityError(AgriSmartError):
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ImageValidationError(AgriSmartError):
    def __init__(self, message: str, status_code: int = 422):
        super().__init__(message)
        self.status_code = status_code


def is_rate_limited(message: str) -> bool:
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def friendly_error(exc: BaseException) -> str:
    """Message shown to the user for a failed action.

    Rate-limit failures get a fixed explanation; everything else surfaces the
    raw message so the user sees what the upstream service said.
    """
    message = str(exc).strip()
    if not message:
        return GENERIC_ERROR_MESSAGE
    if is_rate_limited(message):
        return RATE_LIMIT_MESSAGE
    return message

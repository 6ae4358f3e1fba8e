"""Error classification shared by the prompt codec, API client and coordinator."""

from __future__ import annotations

import enum
from typing import Optional


class ErrorKind(enum.Enum):
    EMPTY_INPUT = "empty_input"
    MISSING_API_KEY = "missing_api_key"
    NETWORK_ERROR = "network_error"
    API_ERROR = "api_error"
    MALFORMED_RESPONSE = "malformed_response"
    INTERNAL_ERROR = "internal_error"


ERROR_SUMMARIES = {
    ErrorKind.EMPTY_INPUT: "No text to translate",
    ErrorKind.MISSING_API_KEY: "Check your API key",
    ErrorKind.NETWORK_ERROR: "Network error",
    ErrorKind.API_ERROR: "API request failed",
    ErrorKind.MALFORMED_RESPONSE: "Unexpected response",
    ErrorKind.INTERNAL_ERROR: "Translation failed",
}


class TranslationError(RuntimeError):
    """Raised when a translation request cannot be completed.

    ``kind`` selects the short message shown to the user; the exception text
    itself is the diagnostic detail that only goes to the log.
    """

    kind: ErrorKind = ErrorKind.NETWORK_ERROR

    @property
    def summary(self) -> str:
        return ERROR_SUMMARIES[self.kind]


class EmptyInputError(TranslationError):
    kind = ErrorKind.EMPTY_INPUT


class MissingApiKeyError(TranslationError):
    kind = ErrorKind.MISSING_API_KEY


class NetworkError(TranslationError):
    kind = ErrorKind.NETWORK_ERROR


class ApiError(TranslationError):
    kind = ErrorKind.API_ERROR

    def __init__(self, status: int, message: Optional[str] = None) -> None:
        self.status = status
        self.message = message
        detail = f"OpenRouter error {status}"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(detail)


class MalformedResponseError(TranslationError):
    kind = ErrorKind.MALFORMED_RESPONSE

    def __init__(self, reason: str, excerpt: str = "") -> None:
        self.excerpt = excerpt
        super().__init__(reason)

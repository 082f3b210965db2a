"""Error types shared by the API service and the Streamlit front-end."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(RuntimeError):
    """Base error type; carries the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class AuthError(ServiceError):
    """Raised when the shared secret is missing or wrong."""

    status_code = 401


class ConfigurationError(ServiceError):
    """Raised when a required environment setting is absent."""


class ParseError(ServiceError):
    """Raised for malformed uploads or malformed model output."""

    status_code = 400


class UnsupportedFormatError(ServiceError):
    """Raised for an upload whose extension is not a known table format."""

    status_code = 415


class UpstreamError(ServiceError):
    """Raised when the model API, the backend API or the store fails."""


class LLMRequestError(UpstreamError):
    """Raised when an LLM call fails."""


class APIRequestError(UpstreamError):
    """Raised when the backend API request fails."""


class PersistenceError(UpstreamError):
    """Raised when the saved-plot store fails."""

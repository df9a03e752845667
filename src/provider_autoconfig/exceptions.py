"""
Exception classes for the provider autoconfig system.

All exceptions inherit from AutoconfigError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class AutoconfigError(Exception):
    """Base exception for all provider autoconfig errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NetworkError(AutoconfigError):
    """Raised when a request fails at the transport level or returns a non-success status."""

    pass


class ProtocolError(AutoconfigError):
    """Raised when a response cannot be parsed or has an unexpected shape."""

    pass


class TemplateError(AutoconfigError):
    """Raised when no provider template can be applied."""

    pass


class PersistenceError(AutoconfigError):
    """Raised when provider store operations fail (file I/O, missing provider)."""

    pass


class ConfigurationError(AutoconfigError):
    """Raised when settings, options or a provider configuration are invalid."""

    pass


class AnalysisTimeoutError(AutoconfigError):
    """Raised when the autoconfig pipeline exceeds its overall deadline."""

    pass

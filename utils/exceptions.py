"""
Typed error taxonomy.

Every error the core raises derives from ``AppError``.  The HTTP layer maps
``status_code`` + ``message`` onto a ``{"error": ...}`` JSON body (see
``api.middleware``); core code never builds responses itself.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class AuthenticationRequired(AppError):
    status_code = 401


class ValidationError(AppError):
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message, detail={"field": field} if field else None)
        self.field = field


class Conflict(AppError):
    status_code = 409


class ConfigurationError(AppError):
    """A provider or secret required for the operation is not configured."""

    status_code = 400


class InvalidOAuthState(AppError):
    status_code = 400


class ProviderNotConnected(AppError):
    status_code = 400

    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} not connected")
        self.provider = provider


class NotFound(AppError):
    """Absent, or owned by somebody else — callers cannot tell which."""

    status_code = 404


class DecryptionError(AppError):
    status_code = 500


class TokenExchangeError(AppError):
    """OAuth token endpoint rejected the request or was unreachable."""

    status_code = 500

    def __init__(self, provider: str, message: str, *, payload: Optional[Any] = None) -> None:
        super().__init__(message, detail=payload)
        self.provider = provider
        self.payload = payload


class TokenRefreshError(TokenExchangeError):
    pass


class TokenExpired(AppError):
    """Provider answered 401 to a call made with a stored access token."""

    status_code = 401

    def __init__(self, provider: str, *, payload: Optional[Any] = None) -> None:
        super().__init__(f"{provider} access token rejected", detail=payload)
        self.provider = provider


class ProviderAPIError(AppError):
    status_code = 502

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status: Optional[int] = None,
        payload: Optional[Any] = None,
    ) -> None:
        super().__init__(message, detail=payload)
        self.provider = provider
        self.status = status
        self.payload = payload


class ProviderTimeout(ProviderAPIError):
    status_code = 504

    def __init__(self, provider: str, url: str) -> None:
        super().__init__(provider, f"{provider} request timed out: {url}")


class SyncFailed(AppError):
    status_code = 502

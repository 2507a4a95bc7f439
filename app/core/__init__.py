"""Core infrastructure: settings, logging, exceptions."""

from .config import settings
from .exceptions import (
    AppException,
    AuthorizationError,
    BadRequestError,
    InsufficientHistoryCoverage,
    NotFoundError,
    PersistenceFailure,
    ProviderError,
    ProviderRestricted,
    ProviderUnavailable,
    SymbolNotFound,
)


__all__ = [
    "AppException",
    "AuthorizationError",
    "BadRequestError",
    "InsufficientHistoryCoverage",
    "NotFoundError",
    "PersistenceFailure",
    "ProviderError",
    "ProviderRestricted",
    "ProviderUnavailable",
    "SymbolNotFound",
    "settings",
]

"""Exception types shared across kickoff modules."""
from __future__ import annotations


class KickoffError(Exception):
    """Base class for kickoff errors."""


class ConfigError(KickoffError):
    """Raised when an environment setting cannot be parsed."""


class ProviderError(KickoffError):
    """Raised when the fixture/statistics provider cannot serve a request."""


class JobTimeoutError(KickoffError, TimeoutError):
    """Raised when a scheduled job exceeds its timeout ceiling."""

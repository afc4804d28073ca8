from __future__ import annotations


class FeedError(Exception):
    """Base class for feed generation failures."""

    retryable = False


class ConfigurationError(FeedError, ValueError):
    """Raised for invalid scoring weight overrides or settings."""


class SourceUnavailable(FeedError):
    """The content source failed or did not answer before the deadline."""

    retryable = True

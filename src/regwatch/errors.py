"""Exception types raised across the ingestion pipeline."""

from __future__ import annotations


class RegwatchError(Exception):
    """Base class for pipeline errors."""


class SourceRunError(RegwatchError):
    """A source pipeline run failed as a whole.

    The original exception is chained as ``__cause__``; callers only get
    the source name and a generic message.
    """

    def __init__(self, source: str, message: str = "") -> None:
        self.source = source
        super().__init__(message or f"Failed to process source {source!r}")


class UnknownSourceError(RegwatchError):
    def __init__(self, source: str) -> None:
        self.source = source
        super().__init__(f"Unknown source {source!r}")


class NormalizationError(RegwatchError):
    """The AI normalizer could not return a valid record."""

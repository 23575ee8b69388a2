"""Failure classification for the ingestion pipeline.

Maps an exception (or a pre-stringified error message) to an
:class:`~corpuslib.models.ErrorInfo`: a display category, whether the
failure may be retried, and a remediation hint.

Typed :class:`~corpuslib.ingest.exceptions.IngestError` subclasses are
classified by type.  Everything else falls back to case-insensitive
keyword matching, checked in priority order:

    network/fetch/timeout/connection > rate limit > AI service > file > database

Only file problems are permanent; every other category is transient.
"""

from __future__ import annotations

import asyncio
import re

from corpuslib.ingest.exceptions import IngestError
from corpuslib.models import ErrorCategory, ErrorInfo

_SUGGESTIONS: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: "Check your internet connection and try again.",
    ErrorCategory.RATE_LIMIT: "Wait a moment and try again. The system is busy.",
    ErrorCategory.AI_PROCESSING: (
        "The AI service is temporarily unavailable. Try again later."
    ),
    ErrorCategory.FILE: "Check the file format and size, then try uploading again.",
    ErrorCategory.DATABASE: "Temporary database issue. Please try again.",
    ErrorCategory.UNKNOWN: (
        "An unexpected error occurred. Try again or contact support."
    ),
}

# Priority order matters: "embedding request timeout" is a network error.
_KEYWORD_RULES: tuple[tuple[ErrorCategory, re.Pattern[str]], ...] = (
    (ErrorCategory.NETWORK, re.compile(r"network|fetch|timeout|timed out|connection")),
    (ErrorCategory.RATE_LIMIT, re.compile(r"rate limit|too many requests|\b429\b")),
    (ErrorCategory.AI_PROCESSING, re.compile(r"openai|gemini|embedding|ai service")),
    (ErrorCategory.FILE, re.compile(r"file|empty|size")),
    (ErrorCategory.DATABASE, re.compile(r"database|\bdb\b")),
)

TRANSIENT_CATEGORIES: frozenset[ErrorCategory] = frozenset(
    {ErrorCategory.NETWORK, ErrorCategory.RATE_LIMIT}
)


def error_info_for(category: ErrorCategory) -> ErrorInfo:
    """Return the fixed ErrorInfo for *category*."""
    return ErrorInfo(
        category=category,
        retryable=category is not ErrorCategory.FILE,
        suggestion=_SUGGESTIONS[category],
    )


def classify_message(message: str) -> ErrorInfo:
    """Classify a free-text error message by keyword."""
    lowered = message.lower()
    for category, pattern in _KEYWORD_RULES:
        if pattern.search(lowered):
            return error_info_for(category)
    return error_info_for(ErrorCategory.UNKNOWN)


def classify_error(error: BaseException | str) -> ErrorInfo:
    """Classify an exception or message.

    Args:
        error: A raised exception, or an error message that crossed an
            external boundary as plain text.

    Returns:
        ErrorInfo with category, retryable flag and suggestion.
    """
    if isinstance(error, str):
        return classify_message(error)
    if isinstance(error, IngestError):
        return error_info_for(error.category)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return error_info_for(ErrorCategory.NETWORK)
    return classify_message(f"{type(error).__name__}: {error}")


def classify_step_error(error: BaseException, step_category: ErrorCategory) -> ErrorInfo:
    """Classify a failure raised by a pipeline step.

    Typed errors keep their own category.  An untyped error is attributed
    to the step that raised it unless its message signals a transient
    network or rate-limit condition.
    """
    if isinstance(error, IngestError):
        return error_info_for(error.category)
    info = classify_error(error)
    if info.category in TRANSIENT_CATEGORIES:
        return info
    return error_info_for(step_category)


def is_transient(error: BaseException) -> bool:
    """True for network and rate-limit failures (safe to retry in place)."""
    return classify_error(error).category in TRANSIENT_CATEGORIES

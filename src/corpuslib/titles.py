"""Document title derivation and word counting for ingested files."""

from __future__ import annotations

import re

MAX_TITLE_LENGTH = 100
FALLBACK_TITLE_WORDS = 6
TITLE_PROMPT_CHARS = 1000
UNTITLED = "Untitled Document"

_GENERIC_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"untitled", re.IGNORECASE),
    re.compile(r"document", re.IGNORECASE),
    re.compile(r"new\s?doc", re.IGNORECASE),
    re.compile(r"draft", re.IGNORECASE),
    re.compile(r"^doc\d*", re.IGNORECASE),
    re.compile(r"^file\d*", re.IGNORECASE),
    re.compile(r"^text\d*", re.IGNORECASE),
)


def strip_extension(file_name: str) -> str:
    """Remove the last extension: ``notes.v2.md`` -> ``notes.v2``."""
    return re.sub(r"\.[^/.]+$", "", file_name)


def is_generic_filename(file_name: str) -> bool:
    """True when the name says nothing about the content (``Untitled.txt``, ``doc3.md``)."""
    stem = strip_extension(file_name)
    return any(pattern.search(stem) for pattern in _GENERIC_NAME_PATTERNS)


def count_words(content: str) -> int:
    """Number of whitespace-separated tokens (0 for blank content)."""
    return len(content.split())


def derive_title(file_name: str, content: str) -> str:
    """Pick a document title for an ingested file.

    Uses the file name without its extension.  Generic names fall back to
    the first few words of the content, or ``"Untitled Document"`` when
    the content is blank.
    """
    stem = strip_extension(file_name).strip()
    if stem and not is_generic_filename(file_name):
        return stem[:MAX_TITLE_LENGTH]
    words = content.split()[:FALLBACK_TITLE_WORDS]
    if not words:
        return UNTITLED
    return " ".join(words)[:MAX_TITLE_LENGTH]


def clean_generated_title(raw: str) -> str:
    """Tidy a model-written title: trim, drop one pair of wrapping quotes, cap length."""
    title = raw.strip()
    title = re.sub(r"^[\"']|[\"']$", "", title).strip()
    return title[:MAX_TITLE_LENGTH]

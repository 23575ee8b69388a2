"""Plain-text extraction for ``.txt`` and ``.md`` uploads."""

from __future__ import annotations

import asyncio
import logging

from corpuslib.ingest.exceptions import ExtractionError
from corpuslib.models import SourceFile

logger = logging.getLogger(__name__)

EMPTY_CONTENT_MESSAGE = "File is empty or contains no readable text"


class PlainTextExtractor:
    """Reads UTF-8 text from disk (off the event loop) or from memory."""

    def __init__(self, encoding: str = "utf-8-sig") -> None:
        self._encoding = encoding

    async def extract_text(self, source: SourceFile) -> str:
        """Return the decoded text of *source*.

        Raises:
            ExtractionError: The file cannot be read, is not valid text,
                or contains only whitespace.
        """
        if source.data is not None:
            raw = source.data
        elif source.path is not None:
            try:
                raw = await asyncio.to_thread(source.path.read_bytes)
            except OSError as exc:
                raise ExtractionError(f"Failed to read file {source.name}: {exc}") from exc
        else:
            raise ExtractionError(f"Failed to read file {source.name}: no content source")

        try:
            text = raw.decode(self._encoding)
        except UnicodeDecodeError as exc:
            raise ExtractionError(
                f"File {source.name} is not valid {self._encoding} text "
                f"(undecodable byte at offset {exc.start})"
            ) from exc

        if not text.strip():
            raise ExtractionError(EMPTY_CONTENT_MESSAGE)

        logger.debug("Extracted %d chars from %s", len(text), source.name)
        return text

"""Gemini-written titles for files with generic names.

A file called ``Untitled.txt`` or ``doc3.md`` gets a title written by the
model from the start of its content.  The pipeline falls back to
:func:`corpuslib.titles.derive_title` whenever this fails.
"""

from __future__ import annotations

import logging

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from corpuslib.ingest.exceptions import AIProcessingError, NetworkError, RateLimitError
from corpuslib.titles import TITLE_PROMPT_CHARS, clean_generated_title

logger = logging.getLogger(__name__)

DEFAULT_TITLE_MODEL = "gemini-2.0-flash"

TITLE_SYSTEM_INSTRUCTION = (
    "Generate a concise, descriptive title (max 8 words) for this document "
    "based on its content. Return only the title, no quotes or explanations."
)


class GeminiTitleGenerator:
    """Asks a Gemini model for a document title.

    Usage::

        generator = GeminiTitleGenerator(api_key="...")
        title = await generator.generate_title("Notes from the spring planning ...")
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_TITLE_MODEL,
        client: genai.Client | None = None,
    ) -> None:
        self._client = client if client is not None else genai.Client(api_key=api_key)
        self.model = model

    async def generate_title(self, content: str) -> str:
        """Return a title for *content* (only the first 1000 chars are sent).

        Raises:
            RateLimitError: The API answered 429.
            NetworkError: The request never completed.
            AIProcessingError: Any other API failure or a blank answer.
        """
        prompt = f"Generate a title for this content:\n\n{content[:TITLE_PROMPT_CHARS]}"
        config = types.GenerateContentConfig(
            system_instruction=TITLE_SYSTEM_INSTRUCTION,
            temperature=0.0,
            max_output_tokens=50,
        )
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            )
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise RateLimitError(f"429 rate limit: {exc.message}") from exc
            raise AIProcessingError(
                f"Title generation failed ({exc.code}): {exc.message}"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network error contacting title service: {exc}") from exc

        title = clean_generated_title(response.text or "")
        if not title:
            raise AIProcessingError("Title generation failed: empty response")

        logger.debug("Generated title %r with %s", title, self.model)
        return title

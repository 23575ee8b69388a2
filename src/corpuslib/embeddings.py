"""Gemini embedding client and the embed-and-attach service.

:class:`GeminiEmbeddingClient` wraps ``client.aio.models.embed_content``
and translates SDK failures into typed ingestion errors:

* API 429            -> :class:`RateLimitError`
* transport failures -> :class:`NetworkError`
* any other failure  -> :class:`EmbeddingError`

:class:`StoreEmbeddingService` composes a client with the document store
to implement the ``embed_and_attach`` step of the pipeline.  A failure to
store the vector is reported as an :class:`EmbeddingError` too.
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors

from corpuslib.ingest.exceptions import (
    AIProcessingError,
    EmbeddingError,
    NetworkError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-004"
DEFAULT_MAX_CHARS = 30_000


class EmbeddingClient(Protocol):
    model: str

    async def embed(self, text: str) -> list[float]: ...


class EmbeddingTarget(Protocol):
    async def attach_embedding(
        self, document_id: str, embedding: Sequence[float], model: str
    ) -> None: ...


class GeminiEmbeddingClient:
    """Computes text embeddings with the google-genai SDK.

    Usage::

        client = GeminiEmbeddingClient(api_key="...")
        vector = await client.embed("Some document text")
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_EMBEDDING_MODEL,
        max_chars: int = DEFAULT_MAX_CHARS,
        client: genai.Client | None = None,
    ) -> None:
        self._client = client if client is not None else genai.Client(api_key=api_key)
        self.model = model
        self._max_chars = max_chars

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for *text* (truncated to ``max_chars``).

        Raises:
            RateLimitError: The API answered 429.
            NetworkError: The request never completed.
            EmbeddingError: Any other API failure or an empty response.
        """
        content = text[: self._max_chars]
        try:
            response = await self._client.aio.models.embed_content(
                model=self.model,
                contents=content,
            )
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise RateLimitError(f"429 rate limit: {exc.message}") from exc
            raise EmbeddingError(
                f"Embedding generation failed ({exc.code}): {exc.message}"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Network error contacting embedding service: {exc}") from exc

        embeddings = getattr(response, "embeddings", None)
        if not embeddings or not embeddings[0].values:
            raise EmbeddingError("Embedding generation failed: empty response")

        values = list(embeddings[0].values)
        logger.debug(
            "Embedded %d chars (%d truncated) -> %d dims",
            len(content),
            len(text) - len(content),
            len(values),
        )
        return values


class StoreEmbeddingService:
    """Embeds a document's text and stores the vector on its row."""

    def __init__(self, client: EmbeddingClient, store: EmbeddingTarget) -> None:
        self._client = client
        self._store = store

    async def embed_and_attach(self, document_id: str, text: str) -> None:
        """Embed *text* and store the vector on *document_id*.

        Network and rate-limit failures keep their type so the caller can
        retry them; any other failure to store the vector surfaces as an
        :class:`EmbeddingError`.
        """
        vector = await self._client.embed(text)
        try:
            await self._store.attach_embedding(document_id, vector, self._client.model)
        except (NetworkError, RateLimitError, AIProcessingError):
            raise
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding could not be stored for document {document_id}: {exc}"
            ) from exc

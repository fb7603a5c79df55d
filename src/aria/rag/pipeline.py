"""Retrieval-augmented query pipeline: search → assemble context → generate."""

from __future__ import annotations

import logging
from typing import Optional

from aria.config import Settings, get_settings
from aria.models import SearchResult
from aria.rag.compute import ChunkCallback, GenerationClient, GenerationError
from aria.rag.context import assemble
from aria.rag.search import SearchClient

logger = logging.getLogger(__name__)


class PipelineError(RuntimeError):
    """A turn could not be answered.  ``cause`` is the underlying error."""

    def __init__(self, cause: Exception, partial: str = "") -> None:
        super().__init__(f"Failed to process query: {cause}")
        self.cause = cause
        self.partial = partial


class QueryPipeline:
    """End-to-end turn: web search → context assembly → LLM generation.

    Search always runs before generation so every answer is grounded on
    the freshest results available.  Search results are not cached
    across turns.
    """

    def __init__(
        self,
        search: SearchClient,
        generator: GenerationClient,
        max_results: int = 5,
    ) -> None:
        self.search_client = search
        self.generator = generator
        self.max_results = max_results

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "QueryPipeline":
        settings = settings or get_settings()
        return cls(
            search=SearchClient(settings=settings),
            generator=GenerationClient(settings=settings),
            max_results=settings.search_max_results,
        )

    # ------------------------------------------------------------------
    # Main query flow
    # ------------------------------------------------------------------
    def answer(self, query: str) -> str:
        """Answer *query*.  Only generation can fail the turn."""
        context = self.build_context(query)
        try:
            text = self.generator.generate(query, context)
        except GenerationError as exc:
            raise PipelineError(exc) from exc
        logger.info("Generated %d-char answer", len(text))
        return text

    def answer_streaming(self, query: str, on_chunk: ChunkCallback) -> str:
        """Stream the answer through *on_chunk* and return the full text."""
        context = self.build_context(query)
        chunks: list[str] = []

        def collect(chunk: str) -> None:
            chunks.append(chunk)
            on_chunk(chunk)

        try:
            self.generator.generate_streaming(query, context, collect)
        except GenerationError as exc:
            raise PipelineError(exc, partial="".join(chunks)) from exc
        return "".join(chunks)

    def build_context(self, query: str) -> str:
        """Run the search step and return the assembled grounding context."""
        results = self._search(query)
        return assemble(results)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _search(self, query: str) -> list[SearchResult]:
        try:
            results = self.search_client.search(query, self.max_results)
        except Exception:
            # SearchClient never raises; this guards injected replacements.
            logger.exception("Search client raised; continuing without context")
            return []
        logger.info("Retrieved %d search results for query", len(results))
        return results

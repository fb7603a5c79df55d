"""Web search via the Tavily API.

Search is best-effort grounding, not a required dependency: every failure
(transport, auth, timeout, malformed body) is logged and turned into an
empty result list and the turn is answered from general knowledge.
Requests are never retried.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from aria.config import Settings, get_settings
from aria.models import SearchResult

logger = logging.getLogger(__name__)


class _TavilyHit(BaseModel):
    title: str = ""
    url: str = ""
    content: str = ""
    score: float = 0.0


class _TavilyResponse(BaseModel):
    results: list[_TavilyHit] = Field(default_factory=list)


class SearchClient:
    """Single-request Tavily search client.

    Parameters
    ----------
    settings : Settings or None
        Source of the API key, endpoint, depth and timeout.
    client : httpx.Client or None
        Injected HTTP client (tests pass one with a ``MockTransport``).
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client or httpx.Client(timeout=self.settings.request_timeout)

    def search(self, query: str, max_results: int = 5) -> list[SearchResult]:
        """Return up to *max_results* results in provider rank order.

        Never raises; returns ``[]`` on any failure.
        """
        if not query.strip() or max_results <= 0:
            return []
        if not self.settings.tavily_api_key:
            logger.warning("TAVILY_API_KEY not set; answering without web context")
            return []

        payload = {
            "api_key": self.settings.tavily_api_key,
            "query": query,
            "search_depth": self.settings.search_depth,
            "include_answer": True,
            "include_raw_content": False,
            "max_results": max_results,
            "include_domains": [],
            "exclude_domains": [],
        }
        try:
            resp = self.client.post(
                self.settings.search_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            resp.raise_for_status()
            parsed = _TavilyResponse.model_validate(resp.json())
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Search failed with HTTP %d: %s",
                exc.response.status_code, exc.response.text[:200],
            )
            return []
        except httpx.HTTPError as exc:
            logger.warning("Search request failed (%s: %s)", type(exc).__name__, exc)
            return []
        except (ValueError, ValidationError) as exc:
            # ValueError covers a non-JSON body.
            logger.warning("Search returned a malformed body: %s", exc)
            return []

        results = [
            SearchResult(
                title=hit.title,
                url=hit.url,
                content=hit.content,
                relevance_score=hit.score,
            )
            for hit in parsed.results[:max_results]
        ]
        logger.info("Search returned %d results for %r", len(results), query)
        return results

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def results_to_dicts(results: list[SearchResult]) -> list[dict]:
    """Convert SearchResult list to JSON-serializable dicts."""
    return [r.to_dict() for r in results]

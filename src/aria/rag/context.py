"""Grounding-context assembly from search results."""

from __future__ import annotations

from aria.models import SearchResult

NO_INFO_SENTINEL = "No relevant information found from web search."
CONTEXT_HEADER = "Relevant information from web search:"


def assemble(results: list[SearchResult]) -> str:
    """Render results as numbered blocks, in input order.

    Pure formatting: nothing is truncated or dropped here.  An empty list
    yields :data:`NO_INFO_SENTINEL`.
    """
    if not results:
        return NO_INFO_SENTINEL

    parts = [CONTEXT_HEADER]
    for i, r in enumerate(results, 1):
        parts.append(
            f"{i}. {r.title}\n"
            f"   URL: {r.url}\n"
            f"   Content: {r.content}"
        )
    return "\n\n".join(parts)

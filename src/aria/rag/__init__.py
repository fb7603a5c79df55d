"""Retrieval-augmented generation: web search, context assembly, completion."""

# Lazy imports to avoid pulling in the provider SDKs at module scan time.
# Use: from aria.rag.pipeline import QueryPipeline

__all__ = ["QueryPipeline", "PipelineError"]


def __getattr__(name: str):
    if name == "QueryPipeline":
        from aria.rag.pipeline import QueryPipeline
        return QueryPipeline
    if name == "PipelineError":
        from aria.rag.pipeline import PipelineError
        return PipelineError
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

"""Context budgeting: content items, the budgeted builder, summarization."""

from lorekeeper.context.builder import (
    CHARS_PER_TOKEN,
    MIN_VIABLE_TOKENS,
    ContentItem,
    ContextBuildError,
    ContextBuilder,
    estimate_tokens,
    format_fragment,
)
from lorekeeper.context.summarizer import AgentSummarizer, Summarizer

__all__ = [
    "AgentSummarizer",
    "CHARS_PER_TOKEN",
    "ContentItem",
    "ContextBuildError",
    "ContextBuilder",
    "MIN_VIABLE_TOKENS",
    "Summarizer",
    "estimate_tokens",
    "format_fragment",
]

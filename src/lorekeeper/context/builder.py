"""Token-budgeted context assembly.

A ContextBuilder collects labeled pieces of evidence (ContentItem) and packs
them into a single string that fits an approximate token ceiling. When the
evidence does not fit, higher-priority items win, summarizable items are
shortened before being dropped, and everything else is evicted.

Token counts are estimated at a fixed ratio of four characters per token.
The ceiling is best-effort: overshoot by one item is acceptable.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lorekeeper.context.summarizer import Summarizer

logger = logging.getLogger(__name__)

# Characters per estimated token
CHARS_PER_TOKEN = 4

# Below this many remaining tokens nothing else is worth adding
MIN_VIABLE_TOKENS = 100

# Headroom kept free when asking for a summary
SUMMARY_HEADROOM_TOKENS = 50


class ContextBuildError(Exception):
    """Exception raised when the budgeted context cannot be built.

    Typically wraps a summarization failure. Retryable at the step level.
    """

    pass


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a text."""
    return len(text) // CHARS_PER_TOKEN


@dataclass
class ContentItem:
    """One labeled unit of evidence.

    Attributes:
        content: Text body
        priority: Importance, higher wins when space is short
        title: Label used as the fragment header
        can_summarize: If False, the item is included whole or dropped
    """

    content: str
    priority: int
    title: str
    can_summarize: bool = True

    def __post_init__(self) -> None:
        if self.priority < 0:
            raise ValueError(f"priority must be non-negative. Got: {self.priority}")

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.content)


def format_fragment(title: str, content: str) -> str:
    """Format one context fragment."""
    return f"=== {title} ===\n{content}\n\n"


class ContextBuilder:
    """Builds a bounded-size context string from content items.

    Each pipeline step creates its own builder and discards it afterwards.
    """

    def __init__(self, max_context_tokens: int) -> None:
        """Initialize an empty builder.

        Args:
            max_context_tokens: Estimated token ceiling for the built context
        """
        if max_context_tokens <= 0:
            raise ValueError(
                f"max_context_tokens must be positive. Got: {max_context_tokens}"
            )
        self.max_context_tokens = max_context_tokens
        self._items: list[ContentItem] = []

    @property
    def items(self) -> list[ContentItem]:
        """Items in insertion order."""
        return list(self._items)

    def add(self, item: ContentItem) -> None:
        self._items.append(item)

    def add_content(
        self,
        content: str,
        priority: int,
        title: str,
        can_summarize: bool = True,
    ) -> None:
        """Add a piece of evidence."""
        self.add(ContentItem(content, priority, title, can_summarize))

    def total_estimated_tokens(self) -> int:
        return sum(item.estimated_tokens for item in self._items)

    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def sorted_items(self) -> list[ContentItem]:
        """Items by descending priority, insertion order kept for ties."""
        # sorted() is stable
        return sorted(self._items, key=lambda item: item.priority, reverse=True)

    def build(self, summarizer: "Summarizer") -> str:
        """Produce the context string within the token ceiling.

        Args:
            summarizer: Used to shorten summarizable items that do not fit

        Returns:
            Concatenated fragments in priority order

        Raises:
            ContextBuildError: If summarization fails
        """
        items = self.sorted_items()

        total_tokens = self.total_estimated_tokens()
        if total_tokens <= self.max_context_tokens:
            return "".join(format_fragment(item.title, item.content) for item in items)

        logger.info(
            "Context exceeds budget (%d > %d estimated tokens), reducing",
            total_tokens,
            self.max_context_tokens,
        )

        fragments: list[str] = []
        remaining_tokens = self.max_context_tokens

        for index, item in enumerate(items):
            item_tokens = item.estimated_tokens

            if item_tokens <= remaining_tokens:
                fragments.append(format_fragment(item.title, item.content))
                remaining_tokens -= item_tokens
            elif item.can_summarize and remaining_tokens > MIN_VIABLE_TOKENS:
                target_length = (remaining_tokens - SUMMARY_HEADROOM_TOKENS) * CHARS_PER_TOKEN
                summarized = self._summarize(summarizer, item, target_length)
                summarized_tokens = estimate_tokens(summarized)

                if summarized_tokens <= remaining_tokens:
                    fragments.append(
                        format_fragment(f"{item.title} (Summarized)", summarized)
                    )
                    remaining_tokens -= summarized_tokens
                    logger.debug(
                        "Summarized '%s' from %d to %d estimated tokens",
                        item.title,
                        item_tokens,
                        summarized_tokens,
                    )
                else:
                    logger.warning(
                        "Skipping '%s' - too large even when summarized", item.title
                    )
            else:
                logger.warning(
                    "Skipping '%s' - exceeds remaining context space", item.title
                )

            if remaining_tokens < MIN_VIABLE_TOKENS:
                for dropped in items[index + 1 :]:
                    logger.warning(
                        "Skipping '%s' - context budget exhausted", dropped.title
                    )
                break

        return "".join(fragments)

    def _summarize(
        self,
        summarizer: "Summarizer",
        item: ContentItem,
        target_length: int,
    ) -> str:
        try:
            return summarizer.summarize(item.content, item.title, target_length)
        except Exception as e:
            raise ContextBuildError(f"Summarization of '{item.title}' failed: {e}") from e

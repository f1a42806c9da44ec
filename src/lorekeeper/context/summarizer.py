"""Summarization capability used by the context builder."""

from typing import TYPE_CHECKING, Protocol

from lorekeeper.llm.prompts import build_summarization_prompt

if TYPE_CHECKING:
    from lorekeeper.llm.client import Agent


class Summarizer(Protocol):
    """Shrinks one content unit to roughly target_length characters."""

    def summarize(self, content: str, title: str, target_length: int) -> str: ...


class AgentSummarizer:
    """Summarizer backed by the summarization role agent."""

    def __init__(self, agent: "Agent") -> None:
        self.agent = agent

    def summarize(self, content: str, title: str, target_length: int) -> str:
        prompt = build_summarization_prompt(content, title, target_length)
        # Summaries carry no extra context
        return self.agent.complete(prompt, "")

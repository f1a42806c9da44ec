"""Unified LLM client wrapper using LiteLLM.

Provides a consistent interface for multiple LLM providers and the
role-bound agents the pipeline talks to. Every role shares one client; the
role's system preamble is fixed when its agent is constructed.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

import litellm

from lorekeeper.llm.prompts import (
    ROLE_FOR_STEP,
    SUMMARIZATION_ROLE,
    get_system_prompt,
    render_user_message,
)
from lorekeeper.models.analysis import StepType
from lorekeeper.models.llm_config import LLMConfig

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Exception raised for LLM-related errors."""

    pass


@dataclass
class LLMResponse:
    """Response from LLM completion.

    Attributes:
        content: Generated text content
        model: Model that generated the response
        usage: Token usage statistics
        finish_reason: Reason for completion (stop, length, etc.)
    """

    content: str
    model: str
    usage: dict[str, int]
    finish_reason: str | None = None


class CompletionProvider(Protocol):
    """Produce a text completion for a prompt plus context."""

    def complete(self, prompt: str, context: str) -> str: ...


# Role agents are completion providers with a fixed system preamble
Agent = CompletionProvider


class LLMClient:
    """Unified LLM client using LiteLLM.

    Supports multiple providers through a single interface:
    - Anthropic
    - OpenAI
    - OpenRouter
    - Ollama (local)
    """

    def __init__(self, config: LLMConfig) -> None:
        """Initialize LLM client with configuration.

        Args:
            config: LLM configuration with provider, model, and credentials
        """
        self.config = config

    def complete(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion from the LLM.

        Args:
            prompt: User prompt for the LLM
            system_prompt: Optional system prompt
            max_tokens: Override max_tokens from config

        Returns:
            LLMResponse with generated content

        Raises:
            LLMError: If the completion fails
        """
        messages: list[dict[str, str]] = []

        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        messages.append({"role": "user", "content": prompt})

        completion_kwargs: dict = {
            "model": self.config.get_litellm_model_name(),
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
            "timeout": self.config.timeout,
        }
        if self.config.api_key:
            completion_kwargs["api_key"] = self.config.api_key
        if self.config.api_base:
            completion_kwargs["api_base"] = self.config.api_base

        try:
            response = litellm.completion(**completion_kwargs)
        except litellm.exceptions.AuthenticationError as e:
            raise LLMError(f"Authentication failed for {self.config.provider}: {e}") from e
        except litellm.exceptions.RateLimitError as e:
            raise LLMError(f"Rate limit exceeded for {self.config.provider}: {e}") from e
        except litellm.exceptions.Timeout as e:
            raise LLMError(
                f"Request to {self.config.provider} timed out after {self.config.timeout}s: {e}"
            ) from e
        except litellm.exceptions.APIConnectionError as e:
            raise LLMError(f"Connection failed to {self.config.provider}: {e}") from e
        except Exception as e:
            raise LLMError(f"LLM completion failed: {e}") from e

        choice = response.choices[0]
        content = choice.message.content or ""

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens or 0,
                "completion_tokens": response.usage.completion_tokens or 0,
                "total_tokens": response.usage.total_tokens or 0,
            }

        if not content.strip():
            raise LLMError(f"Empty completion from {self.config.provider}")

        return LLMResponse(
            content=content,
            model=response.model or self.config.model,
            usage=usage,
            finish_reason=choice.finish_reason,
        )


class RoleAgent:
    """Completion provider bound to one analysis role.

    Attributes:
        client: Shared LLM client
        role: Role name (basic, readme, ..., summarization)
        preamble: System prompt used for every call
    """

    def __init__(self, client: LLMClient, role: str, preamble: str | None = None) -> None:
        self.client = client
        self.role = role
        self.preamble = preamble if preamble is not None else get_system_prompt(role)

    def complete(self, prompt: str, context: str) -> str:
        message = render_user_message(prompt, context)
        response = self.client.complete(message, system_prompt=self.preamble)

        logger.debug(
            "Role '%s': %d tokens, %d chars",
            self.role,
            response.usage.get("total_tokens", 0),
            len(response.content),
        )
        return response.content


@dataclass
class AgentSet:
    """One completion capability per analysis role."""

    agents: dict[str, Agent]

    def for_role(self, role: str) -> Agent:
        try:
            return self.agents[role]
        except KeyError:
            raise KeyError(f"No agent configured for role '{role}'") from None

    def for_step(self, step_type: StepType) -> Agent:
        return self.for_role(ROLE_FOR_STEP[step_type])

    @property
    def summarization(self) -> Agent:
        return self.for_role(SUMMARIZATION_ROLE)


def create_client(config: LLMConfig) -> LLMClient:
    """Create an LLM client from configuration.

    Factory function selecting the backend by provider name. Credentials are
    validated here so a misconfiguration fails before any step runs.

    Args:
        config: LLM configuration

    Returns:
        Configured LLMClient instance

    Raises:
        ValueError: If required credentials are missing
    """
    config.validate()
    logger.debug(
        "Creating %s client for model %s", config.provider, config.get_litellm_model_name()
    )
    return LLMClient(config)


def create_agents(client: LLMClient) -> AgentSet:
    """Create one role agent per analysis role, sharing one client."""
    from lorekeeper.llm.prompts import ROLES

    return AgentSet(agents={role: RoleAgent(client, role) for role in ROLES})

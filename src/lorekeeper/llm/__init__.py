"""LLM integration: prompts, the LiteLLM client, role agents and retries."""

from lorekeeper.llm.prompts import (
    ROLES,
    SUMMARIZATION_ROLE,
    build_step_prompt,
    build_summarization_prompt,
    get_system_prompt,
)
from lorekeeper.llm.client import (
    Agent,
    AgentSet,
    CompletionProvider,
    LLMClient,
    LLMError,
    LLMResponse,
    RoleAgent,
    create_agents,
    create_client,
)
from lorekeeper.llm.retry import (
    RetryExhaustedError,
    RetryingCompletionClient,
    RetryPolicy,
    retry_call,
)

__all__ = [
    "Agent",
    "AgentSet",
    "CompletionProvider",
    "LLMClient",
    "LLMError",
    "LLMResponse",
    "ROLES",
    "RetryExhaustedError",
    "RetryPolicy",
    "RetryingCompletionClient",
    "RoleAgent",
    "SUMMARIZATION_ROLE",
    "build_step_prompt",
    "build_summarization_prompt",
    "create_agents",
    "create_client",
    "get_system_prompt",
    "retry_call",
]

"""LLM Configuration entity for lorekeeper.

Defines the configuration for the LLM provider used by every analysis role.
Supports multiple providers: Anthropic, OpenAI, OpenRouter, and Ollama.
"""

from dataclasses import dataclass, field

# Valid LLM providers
VALID_PROVIDERS = frozenset({"anthropic", "openai", "openrouter", "ollama"})

# Model used when none is configured
DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-3-5-sonnet-20241022",
    "openai": "gpt-4-turbo-preview",
    "openrouter": "anthropic/claude-3-sonnet",
    "ollama": "llama3.2",
}

# Environment variable holding the API key for each cloud provider
API_KEY_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

DEFAULT_OLLAMA_API_BASE = "http://localhost:11434"


@dataclass
class LLMConfig:
    """Configuration for LLM provider.

    Attributes:
        provider: LLM provider (anthropic, openai, openrouter, ollama)
        model: Model identifier (defaults per provider when empty)
        api_key: API key (not required for Ollama)
        api_base: API base URL (custom endpoints, defaults for Ollama)
        temperature: Sampling temperature (0 keeps reruns reproducible)
        max_tokens: Maximum response tokens
        timeout: Per-request timeout in seconds
    """

    provider: str = "anthropic"
    model: str = ""
    api_key: str | None = None
    api_base: str | None = None
    temperature: float = field(default=0.0)
    max_tokens: int = field(default=4096)
    timeout: float = field(default=120.0)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        # Normalize provider to lowercase
        self.provider = self.provider.lower().strip()

        if self.provider not in VALID_PROVIDERS:
            raise ValueError(
                f"Invalid provider '{self.provider}'. "
                f"Must be one of: {sorted(VALID_PROVIDERS)}"
            )

        self.model = (self.model or "").strip() or DEFAULT_MODELS[self.provider]

        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be within [0, 2]. Got: {self.temperature}")

        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive. Got: {self.max_tokens}")

        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive. Got: {self.timeout}")

        if self.provider == "ollama" and not self.api_base:
            self.api_base = DEFAULT_OLLAMA_API_BASE

    @property
    def requires_api_key(self) -> bool:
        """Return True for cloud providers that authenticate with a key."""
        return self.provider in API_KEY_ENV_VARS

    @property
    def is_local(self) -> bool:
        """Return True if using local LLM (no data leaves machine)."""
        return self.provider == "ollama"

    def validate(self) -> None:
        """Check that credentials are present for the selected provider.

        Called before any analysis step runs; a missing key is a fatal
        configuration error.

        Raises:
            ValueError: If a cloud provider has no API key
        """
        if self.requires_api_key and not self.api_key:
            env_var = API_KEY_ENV_VARS[self.provider]
            raise ValueError(
                f"API key required for {self.provider}. "
                f"Pass --api-key, set LOREKEEPER_API_KEY or {env_var}"
            )

    def to_dict(self, include_secrets: bool = True) -> dict[str, str | int | float | None]:
        """Convert to dictionary for serialization.

        Args:
            include_secrets: Whether to include the API key

        Returns:
            Dictionary representation of the configuration
        """
        data: dict[str, str | int | float | None] = {
            "provider": self.provider,
            "model": self.model,
            "api_base": self.api_base,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }
        if include_secrets:
            data["api_key"] = self.api_key
        return data

    @classmethod
    def from_dict(cls, data: dict[str, str | int | float | None]) -> "LLMConfig":
        """Create LLMConfig from dictionary.

        Args:
            data: Dictionary with configuration values

        Returns:
            LLMConfig instance
        """
        return cls(
            provider=str(data.get("provider") or "anthropic"),
            model=str(data.get("model") or ""),
            api_key=data.get("api_key") if data.get("api_key") else None,  # type: ignore[arg-type]
            api_base=data.get("api_base") if data.get("api_base") else None,  # type: ignore[arg-type]
            temperature=float(data.get("temperature", 0.0)),  # type: ignore[arg-type]
            max_tokens=int(data.get("max_tokens", 4096)),  # type: ignore[arg-type]
            timeout=float(data.get("timeout", 120.0)),  # type: ignore[arg-type]
        )

    def get_litellm_model_name(self) -> str:
        """Get the model name in LiteLLM format.

        Returns:
            Model name formatted for LiteLLM
        """
        # LiteLLM routes on a provider/ prefix
        return f"{self.provider}/{self.model}"

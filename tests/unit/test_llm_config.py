"""Unit tests for LLMConfig entity validation."""

import pytest

from lorekeeper.models.llm_config import (
    DEFAULT_MODELS,
    DEFAULT_OLLAMA_API_BASE,
    VALID_PROVIDERS,
    LLMConfig,
)


class TestLLMConfig:
    """Tests for LLMConfig entity."""

    def test_defaults(self) -> None:
        """Test the default provider and reproducible sampling."""
        config = LLMConfig()

        assert config.provider == "anthropic"
        assert config.model == DEFAULT_MODELS["anthropic"]
        assert config.temperature == 0.0
        assert config.max_tokens == 4096
        assert config.timeout == 120.0
        assert config.api_key is None

    def test_provider_normalized_to_lowercase(self) -> None:
        """Test provider is normalized to lowercase."""
        config = LLMConfig(provider=" OpenAI ", api_key="k")

        assert config.provider == "openai"
        assert config.model == DEFAULT_MODELS["openai"]

    def test_invalid_provider_raises_error(self) -> None:
        """Test invalid provider raises ValueError."""
        with pytest.raises(ValueError, match="Invalid provider"):
            LLMConfig(provider="invalid_provider")

    def test_valid_providers(self) -> None:
        """Test the supported provider set."""
        assert VALID_PROVIDERS == {"anthropic", "openai", "openrouter", "ollama"}

    def test_ollama_gets_default_base(self) -> None:
        """Test Ollama defaults to the local server and needs no key."""
        config = LLMConfig(provider="ollama")

        assert config.api_base == DEFAULT_OLLAMA_API_BASE
        assert config.is_local
        assert not config.requires_api_key
        config.validate()

    @pytest.mark.parametrize(
        ("field_name", "value"),
        [("temperature", -0.5), ("temperature", 3.0), ("max_tokens", 0), ("timeout", 0)],
    )
    def test_out_of_range_values(self, field_name: str, value: float) -> None:
        """Test numeric settings are range checked."""
        with pytest.raises(ValueError, match=field_name):
            LLMConfig(**{field_name: value})

    def test_validate_requires_key_for_cloud(self) -> None:
        """Test cloud providers fail validation without a key."""
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            LLMConfig(provider="anthropic").validate()

        LLMConfig(provider="anthropic", api_key="sk-test").validate()

    def test_litellm_model_name(self) -> None:
        """Test model names carry the provider prefix."""
        assert (
            LLMConfig(provider="openrouter", model="meta/llama", api_key="k")
            .get_litellm_model_name()
            == "openrouter/meta/llama"
        )
        assert LLMConfig(provider="ollama", model="qwen").get_litellm_model_name() == "ollama/qwen"


class TestLLMConfigSerialization:
    """Tests for dictionary conversion."""

    def test_to_dict_hides_key_on_request(self) -> None:
        """Test the API key can be left out of serialized output."""
        config = LLMConfig(api_key="sk-secret")

        assert config.to_dict()["api_key"] == "sk-secret"
        assert "api_key" not in config.to_dict(include_secrets=False)

    def test_from_dict(self) -> None:
        """Test loading from a dictionary with partial values."""
        config = LLMConfig.from_dict({"provider": "openai", "model": "gpt-4o", "timeout": 30})

        assert config.provider == "openai"
        assert config.model == "gpt-4o"
        assert config.timeout == 30.0
        assert config.api_key is None

    def test_from_dict_empty(self) -> None:
        """Test an empty dictionary yields defaults."""
        assert LLMConfig.from_dict({}) == LLMConfig()

"""lorekeeper configuration system.

Configuration is YAML-based with per-run CLI overrides (provider, credentials,
output path, budget). Supports environment variable substitution (${VAR}) in
config files.

Configuration file discovery (in priority order):
1. CLI --config argument
2. <repo>/.lorekeeper/config.yaml
3. <repo>/lorekeeper.yaml
4. ~/.config/lorekeeper/config.yaml
"""

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from lorekeeper.models.llm_config import API_KEY_ENV_VARS, LLMConfig
from lorekeeper.storage.db import STATE_DIR_NAME

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yaml"

# Checked before the provider-specific variable
API_KEY_ENV_VAR = "LOREKEEPER_API_KEY"

DEFAULT_INCLUDE_EXTENSIONS = [
    "rs", "py", "js", "ts", "java", "cpp", "c", "h", "go",
    "md", "txt", "toml", "yaml", "yml", "json",
]  # fmt: skip

DEFAULT_EXCLUDE_DIRS = [
    "target", "node_modules", ".git", "build", "dist", ".next", "__pycache__",
    STATE_DIR_NAME,
]  # fmt: skip

DEFAULT_EXCLUDE_FILES = ["package-lock.json", "Cargo.lock", "yarn.lock"]


class ConfigError(ValueError):
    """Exception raised for unreadable or invalid configuration files."""

    pass


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class AnalysisConfig:
    """Analysis budget, retry and file-selection settings.

    Attributes:
        max_context_tokens: Estimated token ceiling for one model call's context
        max_retries: Attempts per step before the run fails
        retry_delay_seconds: Fixed delay between failed attempts
        step_timeout_seconds: Optional deadline for all attempts of one step
        max_file_size: Files larger than this (bytes) are never read
        max_depth: Maximum directory depth walked
        include_extensions: Source file extensions considered as evidence
        exclude_dirs: Directory names never walked
        exclude_files: File names never read
        max_source_files: Upper bound on source files offered to one step
    """

    max_context_tokens: int = 100_000
    max_retries: int = 3
    retry_delay_seconds: float = 5.0
    step_timeout_seconds: float | None = None
    max_file_size: int = 1024 * 1024
    max_depth: int = 10
    include_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_INCLUDE_EXTENSIONS)
    )
    exclude_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_DIRS))
    exclude_files: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_FILES))
    max_source_files: int = 25

    def __post_init__(self) -> None:
        """Validate analysis configuration."""
        if self.max_context_tokens <= 0:
            raise ValueError(
                f"max_context_tokens must be positive. Got: {self.max_context_tokens}"
            )
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1. Got: {self.max_retries}")
        if self.retry_delay_seconds < 0:
            raise ValueError(
                f"retry_delay_seconds must be non-negative. Got: {self.retry_delay_seconds}"
            )
        if self.step_timeout_seconds is not None and self.step_timeout_seconds <= 0:
            raise ValueError(
                f"step_timeout_seconds must be positive. Got: {self.step_timeout_seconds}"
            )
        if self.max_file_size <= 0:
            raise ValueError(f"max_file_size must be positive. Got: {self.max_file_size}")
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be at least 1. Got: {self.max_depth}")
        if self.max_source_files < 1:
            raise ValueError(
                f"max_source_files must be at least 1. Got: {self.max_source_files}"
            )

        # Accept ".py" as well as "py"
        self.include_extensions = [ext.lstrip(".").lower() for ext in self.include_extensions]


@dataclass
class OutputConfig:
    """Output configuration.

    Attributes:
        path: Output file path, relative paths resolve against the repository
        extra_context: Operator instructions appended to every step prompt
    """

    path: str = "README.ai.md"
    extra_context: str | None = None

    def resolve(self, repo_path: Path) -> Path:
        """Return the absolute output path for a repository."""
        path = Path(self.path).expanduser()
        if not path.is_absolute():
            path = repo_path / path
        return path


@dataclass
class LorekeeperConfig:
    """Top-level lorekeeper configuration.

    Attributes:
        llm: LLM provider settings shared by every role
        analysis: Budget, retry and file-selection settings
        output: Output document settings
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Set by load_config
    _config_path: Path | None = field(default=None, repr=False)

    @property
    def config_path(self) -> Path | None:
        """Get the path to the config file that was loaded."""
        return self._config_path

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """Convert to a YAML-serializable dictionary.

        Args:
            include_secrets: Whether to include the API key
        """
        analysis = self.analysis
        return {
            "llm": self.llm.to_dict(include_secrets=include_secrets),
            "analysis": {
                "max_context_tokens": analysis.max_context_tokens,
                "max_retries": analysis.max_retries,
                "retry_delay_seconds": analysis.retry_delay_seconds,
                "step_timeout_seconds": analysis.step_timeout_seconds,
                "max_file_size": analysis.max_file_size,
                "max_depth": analysis.max_depth,
                "include_extensions": list(analysis.include_extensions),
                "exclude_dirs": list(analysis.exclude_dirs),
                "exclude_files": list(analysis.exclude_files),
                "max_source_files": analysis.max_source_files,
            },
            "output": {
                "path": self.output.path,
                "extra_context": self.output.extra_context,
            },
        }


# =============================================================================
# Environment Variable Substitution
# =============================================================================


def substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in config values.

    Supports ${VAR} syntax for environment variable substitution.
    Example: ${ANTHROPIC_API_KEY} -> value of ANTHROPIC_API_KEY

    Args:
        value: Config value (string, dict, list, or other)

    Returns:
        Value with environment variables substituted

    Raises:
        ConfigError: If a referenced variable is not set
    """
    if isinstance(value, str):
        pattern = re.compile(r"\$\{([^}]+)\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable not set: {var_name}")
            return env_value

        return pattern.sub(replace_var, value)

    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [substitute_env_vars(v) for v in value]

    return value


# =============================================================================
# Config File Discovery
# =============================================================================


def user_config_path() -> Path:
    """Return the user-level config file path."""
    return Path.home() / ".config" / "lorekeeper" / CONFIG_FILE_NAME


def repo_config_path(repo_path: Path) -> Path:
    """Return the repository-level config file path inside the state directory."""
    return repo_path / STATE_DIR_NAME / CONFIG_FILE_NAME


def find_config_file(repo_path: Path | None = None) -> Path | None:
    """Find configuration file in standard locations.

    Search order:
    1. <repo>/.lorekeeper/config.yaml
    2. <repo>/lorekeeper.yaml
    3. ~/.config/lorekeeper/config.yaml

    Args:
        repo_path: Repository being analyzed (defaults to cwd)

    Returns:
        Path to config file if found, None otherwise
    """
    if repo_path is None:
        repo_path = Path.cwd()

    repo_path = repo_path.resolve()

    candidates = [
        repo_config_path(repo_path),
        repo_path / "lorekeeper.yaml",
        user_config_path(),
    ]

    for candidate in candidates:
        if candidate.is_file():
            return candidate

    return None


# =============================================================================
# Config Loading
# =============================================================================


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return section


def load_config_from_dict(data: dict[str, Any]) -> LorekeeperConfig:
    """Load configuration from a dictionary.

    Args:
        data: Configuration dictionary

    Returns:
        LorekeeperConfig instance

    Raises:
        ConfigError: If a section is malformed or a variable is unset
        ValueError: If a value is out of range
    """
    data = substitute_env_vars(data)

    config = LorekeeperConfig()

    if "llm" in data:
        config.llm = LLMConfig.from_dict(_section(data, "llm"))

    if "analysis" in data:
        analysis_data = _section(data, "analysis")
        defaults = config.analysis
        step_timeout = analysis_data.get("step_timeout_seconds", defaults.step_timeout_seconds)
        config.analysis = AnalysisConfig(
            max_context_tokens=int(
                analysis_data.get("max_context_tokens", defaults.max_context_tokens)
            ),
            max_retries=int(analysis_data.get("max_retries", defaults.max_retries)),
            retry_delay_seconds=float(
                analysis_data.get("retry_delay_seconds", defaults.retry_delay_seconds)
            ),
            step_timeout_seconds=float(step_timeout) if step_timeout is not None else None,
            max_file_size=int(analysis_data.get("max_file_size", defaults.max_file_size)),
            max_depth=int(analysis_data.get("max_depth", defaults.max_depth)),
            include_extensions=list(
                analysis_data.get("include_extensions", defaults.include_extensions)
            ),
            exclude_dirs=list(analysis_data.get("exclude_dirs", defaults.exclude_dirs)),
            exclude_files=list(analysis_data.get("exclude_files", defaults.exclude_files)),
            max_source_files=int(
                analysis_data.get("max_source_files", defaults.max_source_files)
            ),
        )

    if "output" in data:
        output_data = _section(data, "output")
        config.output = OutputConfig(
            path=output_data.get("path") or config.output.path,
            extra_context=output_data.get("extra_context"),
        )

    return config


def load_config(
    config_path: Path | None = None,
    repo_path: Path | None = None,
    auto_discover: bool = True,
) -> LorekeeperConfig:
    """Load configuration from file.

    Args:
        config_path: Explicit path to config file
        repo_path: Repository whose config locations are searched
        auto_discover: Whether to search for config file if not specified

    Returns:
        LorekeeperConfig instance

    Raises:
        FileNotFoundError: If config_path specified but doesn't exist
        ConfigError: If the file is not valid YAML
    """
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        found_path: Path | None = config_path
    elif auto_discover:
        found_path = find_config_file(repo_path)
    else:
        found_path = None

    if found_path is None:
        return LorekeeperConfig()

    logger.debug("Loading config from %s", found_path)
    try:
        with open(found_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {found_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {found_path} must contain a mapping")

    config = load_config_from_dict(data)
    config._config_path = found_path
    return config


def resolve_api_key(
    provider: str,
    cli_key: str | None = None,
    config_key: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Pick the API key for a provider.

    Order: CLI option, LOREKEEPER_API_KEY, the provider's own variable
    (e.g. ANTHROPIC_API_KEY), then the config file.

    Args:
        provider: Normalized provider name
        cli_key: Key passed on the command line
        config_key: Key from the config file
        environ: Environment to read (defaults to os.environ)

    Returns:
        The first non-empty key, or None
    """
    if environ is None:
        environ = os.environ

    candidates = [cli_key, environ.get(API_KEY_ENV_VAR)]
    provider_var = API_KEY_ENV_VARS.get(provider)
    if provider_var:
        candidates.append(environ.get(provider_var))
    candidates.append(config_key)

    for candidate in candidates:
        if candidate:
            return candidate
    return None


def store_config(config: LorekeeperConfig, repo_path: Path) -> Path:
    """Write the effective configuration into the repository state directory.

    The API key is never written.

    Returns:
        Path of the written file
    """
    path = repo_config_path(repo_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        f.write("# Written by lorekeeper analyze. API keys are never stored here.\n")
        yaml.safe_dump(config.to_dict(include_secrets=False), f, sort_keys=False)

    logger.debug("Stored config at %s", path)
    return path


def create_default_config() -> str:
    """Create default configuration YAML content.

    Returns:
        YAML string with default configuration and comments
    """
    return '''# lorekeeper configuration

# LLM settings (one provider shared by every analysis role)
llm:
  provider: "anthropic"  # anthropic, openai, openrouter, ollama
  # model: "claude-3-5-sonnet-20241022"  # Defaults per provider
  # api_key: "${ANTHROPIC_API_KEY}"  # Prefer LOREKEEPER_API_KEY or the provider variable
  # api_base: "http://localhost:11434"  # Custom endpoint, defaults for ollama
  temperature: 0
  max_tokens: 4096
  timeout: 120           # Seconds per request

# Context budget, retries and file selection
analysis:
  max_context_tokens: 100000
  max_retries: 3
  retry_delay_seconds: 5
  # step_timeout_seconds: 600  # Deadline for all attempts of one step
  max_file_size: 1048576
  max_depth: 10
  max_source_files: 25
  exclude_dirs: ["target", "node_modules", ".git", "build", "dist", ".next", "__pycache__", ".lorekeeper"]
  exclude_files: ["package-lock.json", "Cargo.lock", "yarn.lock"]

# Output document
output:
  path: "README.ai.md"
  # extra_context: "Focus on the public API."
'''

"""Preflight validation.

Configuration and environment problems are reported before any analysis step
runs: a missing API key, an unreachable Ollama server or a read-only state
directory would otherwise fail the first step after its retries.
"""

import importlib.util
import json
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lorekeeper.models.llm_config import API_KEY_ENV_VARS, LLMConfig
from lorekeeper.storage.db import state_dir


@dataclass
class ToolCheck:
    """Result of a single preflight check.

    Attributes:
        name: Check name
        available: Whether the check passed
        version: Version if applicable
        required: Whether a failure blocks analysis
        path: Path or URL the check looked at
        message: Status message (human-readable context)
    """

    name: str
    available: bool
    version: str | None = None
    required: bool = True
    path: str | None = None
    message: str = ""


@dataclass
class PreflightResult:
    """Result of preflight validation.

    Attributes:
        success: Whether all required checks passed
        checks: Individual check results
        errors: Messages for failed required checks
        warnings: Messages for failed optional checks
    """

    success: bool = True
    checks: list[ToolCheck] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_check(self, check: ToolCheck) -> None:
        """Add a check result."""
        self.checks.append(check)

        if not check.available:
            detail = f"{check.name}: {check.message}" if check.message else check.name
            if check.required:
                self.success = False
                self.errors.append(detail)
            else:
                self.warnings.append(detail)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "success": self.success,
            "checks": [
                {
                    "name": c.name,
                    "available": c.available,
                    "version": c.version,
                    "required": c.required,
                    "path": c.path,
                    "message": c.message,
                }
                for c in self.checks
            ],
            "errors": self.errors,
            "warnings": self.warnings,
        }


class PreflightChecker:
    """Validates the environment before analysis.

    Usage:
        checker = PreflightChecker()
        result = checker.check_all(repo_path, llm_config)
        if not result.success:
            raise typer.Exit(1)
    """

    def __init__(self, timeout: int = 10) -> None:
        """Initialize preflight checker.

        Args:
            timeout: Timeout in seconds for network checks
        """
        self.timeout = timeout

    def check_litellm(self) -> ToolCheck:
        """Check that the LiteLLM package is importable."""
        litellm_spec = importlib.util.find_spec("litellm")
        if litellm_spec is None:
            return ToolCheck(
                name="litellm",
                available=False,
                message="Install with: pip install litellm",
            )

        import litellm

        return ToolCheck(
            name="litellm",
            available=True,
            version=getattr(litellm, "__version__", None),
            path=litellm_spec.origin,
            message="Unified LLM interface",
        )

    def check_repository(self, repo_path: Path) -> ToolCheck:
        if not repo_path.is_dir():
            return ToolCheck(
                name="repository",
                available=False,
                path=str(repo_path),
                message="Repository path is not a directory",
            )
        return ToolCheck(name="repository", available=True, path=str(repo_path))

    def check_credentials(self, llm: LLMConfig) -> ToolCheck:
        """Check that a cloud provider has an API key."""
        if not llm.requires_api_key:
            return ToolCheck(
                name="credentials",
                available=True,
                message=f"{llm.provider} needs no API key",
            )
        if llm.api_key:
            return ToolCheck(
                name="credentials",
                available=True,
                message=f"API key present for {llm.provider}",
            )
        return ToolCheck(
            name="credentials",
            available=False,
            message=(
                f"API key required for {llm.provider}. Pass --api-key, set "
                f"LOREKEEPER_API_KEY or {API_KEY_ENV_VARS[llm.provider]}"
            ),
        )

    def check_ollama_server(self, api_base: str) -> ToolCheck:
        """Check if an Ollama server is running and responding.

        Args:
            api_base: Ollama API base URL

        Returns:
            ToolCheck result
        """
        url = f"{api_base.rstrip('/')}/api/version"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as response:
                data = json.loads(response.read().decode() or "{}")
        except (urllib.error.URLError, OSError, ValueError) as e:
            return ToolCheck(
                name="ollama",
                available=False,
                path=api_base,
                message=f"Ollama not responding at {api_base}: {e}",
            )

        return ToolCheck(
            name="ollama",
            available=True,
            version=data.get("version") if isinstance(data, dict) else None,
            path=api_base,
            message="Local LLM server",
        )

    def check_state_dir_writable(self, repo_path: Path) -> ToolCheck:
        """Check that the state directory can be created and written."""
        directory = state_dir(repo_path)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=directory, prefix=".write-test-"):
                pass
        except OSError as e:
            return ToolCheck(
                name="state directory",
                available=False,
                path=str(directory),
                message=f"Not writable: {e}",
            )
        return ToolCheck(
            name="state directory",
            available=True,
            path=str(directory),
            message="Writable",
        )

    def check_all(self, repo_path: Path, llm: LLMConfig) -> PreflightResult:
        """Run all preflight checks.

        Args:
            repo_path: Repository to analyze
            llm: Effective LLM configuration (API key already resolved)

        Returns:
            PreflightResult with all check results
        """
        result = PreflightResult()

        repository = self.check_repository(repo_path)
        result.add_check(repository)
        result.add_check(self.check_litellm())
        result.add_check(self.check_credentials(llm))

        if llm.is_local and llm.api_base:
            result.add_check(self.check_ollama_server(llm.api_base))

        if repository.available:
            result.add_check(self.check_state_dir_writable(repo_path))

        return result

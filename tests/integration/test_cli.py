"""Integration tests for lorekeeper CLI commands.

These tests exercise the full CLI workflow against sample repositories, with
LiteLLM patched so no model is ever contacted.
"""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import yaml
from typer.testing import CliRunner

from lorekeeper import __version__
from lorekeeper.cli import app
from lorekeeper.config import repo_config_path

runner = CliRunner()


def _completion(content: str = "# Demo knowledge\n") -> MagicMock:
    mock_response = MagicMock()
    mock_response.choices = [MagicMock(message=MagicMock(content=content), finish_reason="stop")]
    mock_response.model = "llama3.2"
    mock_response.usage = None
    return mock_response


class TestGlobalOptions:
    """Tests for options handled by the app callback."""

    def test_version(self) -> None:
        """Test --version prints the package version."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"lorekeeper {__version__}" in result.output

    def test_missing_config_file(self, sample_repo: Path, tmp_path: Path) -> None:
        """Test a --config path that does not exist is rejected."""
        result = runner.invoke(
            app, ["--config", str(tmp_path / "missing.yaml"), "status", str(sample_repo)]
        )

        assert result.exit_code != 0


class TestInit:
    """Tests for `lorekeeper init`."""

    def test_init_writes_template(self, sample_repo: Path) -> None:
        """Test init creates the repository config file."""
        result = runner.invoke(app, ["init", str(sample_repo)])

        assert result.exit_code == 0, result.output
        config_file = repo_config_path(sample_repo)
        assert config_file.exists()
        assert yaml.safe_load(config_file.read_text())["llm"]["provider"] == "anthropic"

    def test_init_refuses_overwrite(self, sample_repo: Path) -> None:
        """Test an existing config needs --force."""
        config_file = repo_config_path(sample_repo)
        config_file.parent.mkdir()
        config_file.write_text("llm: {provider: ollama}\n")

        refused = runner.invoke(app, ["init", str(sample_repo)])
        forced = runner.invoke(app, ["init", "--force", str(sample_repo)])

        assert refused.exit_code == 1
        assert forced.exit_code == 0
        assert "anthropic" in config_file.read_text()


class TestStatus:
    """Tests for `lorekeeper status`."""

    def test_status_fresh_repository(self, sample_repo: Path) -> None:
        """Test status of a never-analyzed repository creates no state."""
        result = runner.invoke(app, ["status", str(sample_repo)])

        assert result.exit_code == 0
        assert "No analysis has run yet." in result.output
        assert "Next step: Basic" in result.output
        assert not (sample_repo / ".lorekeeper").exists()

    def test_status_json(self, sample_repo: Path) -> None:
        """Test --json prints a machine-readable report on stdout."""
        result = runner.invoke(app, ["status", "--json", str(sample_repo)])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["steps"] == []
        assert data["next_step"] == "Basic"
        assert data["complete"] is False

    def test_status_missing_repository(self, tmp_path: Path) -> None:
        """Test a repository path that does not exist is rejected."""
        result = runner.invoke(app, ["status", str(tmp_path / "missing")])

        assert result.exit_code != 0


class TestAnalyze:
    """Tests for `lorekeeper analyze`."""

    def test_missing_api_key(self, sample_repo: Path) -> None:
        """Test a cloud provider without a key fails before any step runs."""
        with patch("litellm.completion") as mock_call:
            result = runner.invoke(app, ["analyze", str(sample_repo)])

        assert result.exit_code == 1
        mock_call.assert_not_called()
        assert not (sample_repo / "README.ai.md").exists()

    def test_invalid_provider(self, sample_repo: Path) -> None:
        """Test an unknown provider is a configuration error."""
        result = runner.invoke(app, ["analyze", "--provider", "nope", str(sample_repo)])

        assert result.exit_code == 1

    def test_full_run_with_ollama(self, sample_repo: Path) -> None:
        """Test a complete run writes the document and records every step."""
        with patch("litellm.completion", return_value=_completion()) as mock_call:
            result = runner.invoke(
                app,
                ["analyze", "--provider", "ollama", "--model", "llama3.2", str(sample_repo)],
            )

        assert result.exit_code == 0, result.output
        assert "Knowledge document written to" in result.output
        assert (sample_repo / "README.ai.md").read_text() == "# Demo knowledge\n"
        assert mock_call.call_count == 7
        assert mock_call.call_args.kwargs["model"] == "ollama/llama3.2"

        status = runner.invoke(app, ["status", "--json", str(sample_repo)])
        report = json.loads(status.stdout)
        assert report["complete"] is True
        assert report["knowledge_count"] == 6

    def test_stored_config_has_no_key(self, sample_repo: Path) -> None:
        """Test the effective config is stored without the API key."""
        with patch("litellm.completion", return_value=_completion()):
            result = runner.invoke(
                app,
                ["analyze", "--provider", "openai", "--api-key", "sk-cli-secret", str(sample_repo)],
            )

        assert result.exit_code == 0, result.output
        stored = repo_config_path(sample_repo).read_text()
        assert "sk-cli-secret" not in stored
        assert yaml.safe_load(stored)["llm"]["provider"] == "openai"

    def test_key_from_environment(self, sample_repo: Path, monkeypatch) -> None:
        """Test LOREKEEPER_API_KEY is used when no key is passed."""
        monkeypatch.setenv("LOREKEEPER_API_KEY", "sk-env")

        with patch("litellm.completion", return_value=_completion()) as mock_call:
            result = runner.invoke(app, ["analyze", str(sample_repo)])

        assert result.exit_code == 0, result.output
        assert mock_call.call_args.kwargs["api_key"] == "sk-env"

    def test_options_override_config(self, sample_repo: Path, tmp_path: Path) -> None:
        """Test output path and extra context options reach the run."""
        output = tmp_path / "out" / "DOC.md"

        with patch("litellm.completion", return_value=_completion()) as mock_call:
            result = runner.invoke(
                app,
                [
                    "analyze",
                    "--provider", "ollama",
                    "--output", str(output),
                    "--context", "Focus on greetings.",
                    str(sample_repo),
                ],
            )  # fmt: skip

        assert result.exit_code == 0, result.output
        assert output.exists()
        assert not (sample_repo / "README.ai.md").exists()
        first_user_message = mock_call.call_args_list[0].kwargs["messages"][1]["content"]
        assert "Focus on greetings." in first_user_message

    def test_failed_step_exits_and_resumes(self, sample_repo: Path) -> None:
        """Test a failing step exits 1 and the next run resumes at that step."""
        with patch("litellm.completion", side_effect=RuntimeError("model offline")):
            failed = runner.invoke(
                app,
                ["analyze", "--provider", "ollama", "--max-retries", "1", str(sample_repo)],
            )

        assert failed.exit_code == 1
        assert not (sample_repo / "README.ai.md").exists()

        status = json.loads(runner.invoke(app, ["status", "--json", str(sample_repo)]).stdout)
        assert status["steps"][0]["status"] == "Failed"
        assert status["next_step"] == "Basic"

        with patch("litellm.completion", return_value=_completion()) as mock_call:
            resumed = runner.invoke(app, ["analyze", "--provider", "ollama", str(sample_repo)])

        assert resumed.exit_code == 0, resumed.output
        assert mock_call.call_count == 7


class TestCheck:
    """Tests for `lorekeeper check`."""

    def test_check_missing_key(self, sample_repo: Path) -> None:
        """Test check fails when the provider needs a key."""
        result = runner.invoke(app, ["check", "--json", str(sample_repo)])

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["success"] is False
        assert any(error.startswith("credentials:") for error in data["errors"])

    def test_check_with_key(self, sample_repo: Path) -> None:
        """Test check passes with a key for a cloud provider."""
        result = runner.invoke(app, ["check", "--api-key", "sk-test", str(sample_repo)])

        assert result.exit_code == 0, result.output
        assert "All preflight checks passed" in result.output

"""lorekeeper CLI interface.

Commands:
- analyze: Run (or resume) the analysis of a repository
- status: Show the analysis state of a repository
- init: Write a starter configuration file
- check: Validate the environment before analysis

Global options:
- --config: Path to configuration file
- --verbose: Enable verbose output with timestamps
- --quiet: Suppress info messages
- --ci: JSON log lines
- --version: Show version and exit
"""

import dataclasses
import json
from pathlib import Path
from typing import Annotated

import typer

from lorekeeper import __version__
from lorekeeper.config import (
    ConfigError,
    LorekeeperConfig,
    create_default_config,
    load_config,
    repo_config_path,
    resolve_api_key,
    store_config,
)
from lorekeeper.models.llm_config import LLMConfig
from lorekeeper.utils.logging import configure_from_cli, get_logger

app = typer.Typer(
    name="lorekeeper",
    help="Resumable LLM analysis of a code repository into one knowledge document",
    add_completion=False,
    no_args_is_help=True,
)

# Global state
_config_path: Path | None = None
_logger = get_logger()

RepoArgument = Annotated[
    Path,
    typer.Argument(
        help="Repository path",
        exists=True,
        file_okay=False,
        resolve_path=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"lorekeeper {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output with timestamps",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress info messages (warnings and errors only)",
        ),
    ] = False,
    ci: Annotated[
        bool,
        typer.Option(
            "--ci",
            help="Enable CI mode with JSON log output",
        ),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """lorekeeper - step-by-step repository analysis with an LLM.

    Each run resumes after the last completed step and finally writes a
    consolidated knowledge document (README.ai.md by default).
    """
    global _config_path

    configure_from_cli(verbose=verbose, quiet=quiet, ci=ci)
    _config_path = config


def _load_config(repo_path: Path) -> LorekeeperConfig:
    """Load configuration for a repository or exit with code 1."""
    try:
        config = load_config(config_path=_config_path, repo_path=repo_path)
    except FileNotFoundError as e:
        _logger.error(str(e))
        raise typer.Exit(1)
    except (ConfigError, ValueError) as e:
        _logger.error(f"Failed to load config: {e}")
        raise typer.Exit(1)

    if config.config_path:
        _logger.debug(f"Loaded config from: {config.config_path}")
    return config


def _effective_llm_config(
    base: LLMConfig,
    provider: str | None,
    model: str | None,
    api_key: str | None,
    base_url: str | None,
) -> LLMConfig:
    """Apply CLI overrides to the configured LLM settings.

    Switching provider drops the configured model and endpoint unless they
    are given again, since they belong to the previous provider.
    """
    new_provider = (provider or base.provider).lower().strip()
    switched = new_provider != base.provider

    return LLMConfig(
        provider=new_provider,
        model=model or ("" if switched else base.model),
        api_key=resolve_api_key(
            new_provider,
            cli_key=api_key,
            config_key=None if switched else base.api_key,
        ),
        api_base=base_url or (None if switched else base.api_base),
        temperature=base.temperature,
        max_tokens=base.max_tokens,
        timeout=base.timeout,
    )


# =============================================================================
# analyze command
# =============================================================================


@app.command()
def analyze(
    repo: RepoArgument,
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider",
            "-p",
            help="LLM provider: anthropic, openai, openrouter, ollama",
        ),
    ] = None,
    api_key: Annotated[
        str | None,
        typer.Option(
            "--api-key",
            "-k",
            help="API key (defaults to LOREKEEPER_API_KEY or the provider variable)",
        ),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option(
            "--model",
            "-m",
            help="Model name (defaults per provider)",
        ),
    ] = None,
    base_url: Annotated[
        str | None,
        typer.Option(
            "--base-url",
            help="Custom API endpoint",
        ),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output file path (overrides config)",
        ),
    ] = None,
    context: Annotated[
        str | None,
        typer.Option(
            "--context",
            help="Extra instructions added to every analysis step",
        ),
    ] = None,
    max_context_tokens: Annotated[
        int | None,
        typer.Option(
            "--max-context-tokens",
            help="Estimated token budget per model call",
        ),
    ] = None,
    max_retries: Annotated[
        int | None,
        typer.Option(
            "--max-retries",
            help="Attempts per step before the run fails",
        ),
    ] = None,
) -> None:
    """Analyze a repository, resuming after the last completed step.

    Exit codes:
        0: All steps completed and the document was written
        1: Configuration error or a step failed
    """
    from lorekeeper.llm.client import create_agents, create_client
    from lorekeeper.pipeline import AnalysisFailedError, run_analysis
    from lorekeeper.storage.db import StorageError
    from lorekeeper.storage.lock import LockError

    repo_path = repo
    _logger.info(f"Analyzing repository: {repo_path}")

    config = _load_config(repo_path)

    try:
        config.llm = _effective_llm_config(config.llm, provider, model, api_key, base_url)

        overrides = {}
        if max_context_tokens is not None:
            overrides["max_context_tokens"] = max_context_tokens
        if max_retries is not None:
            overrides["max_retries"] = max_retries
        if overrides:
            config.analysis = dataclasses.replace(config.analysis, **overrides)

        if output is not None:
            config.output.path = str(output.expanduser().resolve())
        if context is not None:
            config.output.extra_context = context

        client = create_client(config.llm)
    except ValueError as e:
        _logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)

    _logger.info(f"Using {config.llm.provider} model {config.llm.model}")

    try:
        store_config(config, repo_path)
    except OSError as e:
        _logger.error(f"Cannot write configuration: {e}")
        raise typer.Exit(1)

    try:
        outcome = run_analysis(repo_path, config, create_agents(client))
    except LockError as e:
        _logger.error(str(e))
        raise typer.Exit(1)
    except AnalysisFailedError as e:
        _logger.error(f"Analysis failed at the {e.step_type.value} step: {e.cause}")
        _logger.error("Run analyze again to resume from this step.")
        raise typer.Exit(1)
    except StorageError as e:
        _logger.error(f"State database error: {e}")
        raise typer.Exit(1)

    if outcome.interrupted_steps:
        _logger.warning(f"Retried {outcome.interrupted_steps} interrupted step(s)")

    typer.echo(f"\n📄 Knowledge document written to: {outcome.output_path}")
    raise typer.Exit(0)


# =============================================================================
# status command
# =============================================================================


@app.command()
def status(
    repo: RepoArgument,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output status as JSON",
        ),
    ] = False,
) -> None:
    """Show which analysis steps have run for a repository."""
    from lorekeeper.pipeline import read_status
    from lorekeeper.storage.db import StorageError

    try:
        report = read_status(repo)
    except StorageError as e:
        _logger.error(f"State database error: {e}")
        raise typer.Exit(1)

    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        raise typer.Exit(0)

    typer.echo(f"\n📊 Analysis status: {report.repository}\n")

    if not report.steps:
        typer.echo("  No analysis has run yet.")
    for step in report.steps:
        icon = {
            "Completed": "✅",
            "Failed": "❌",
            "InProgress": "⏳",
        }.get(step.status.value, "•")
        timestamp = step.created_at.strftime("%Y-%m-%d %H:%M:%S")
        typer.echo(f"  {icon} {step.step_type.value:<20} {step.status.value:<11} {timestamp}")
        if step.error_message:
            typer.echo(f"     └─ {step.error_message}")

    typer.echo()
    typer.echo(f"  Knowledge entries: {report.knowledge_count}")
    if report.is_complete:
        typer.echo("  Analysis complete. Running analyze again regenerates the document.")
    else:
        typer.echo(f"  Next step: {report.next_step.value}")
    raise typer.Exit(0)


# =============================================================================
# init command
# =============================================================================


@app.command()
def init(
    repo: RepoArgument,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Overwrite an existing configuration file",
        ),
    ] = False,
) -> None:
    """Write a starter configuration file for a repository."""
    config_file = repo_config_path(repo)

    if config_file.exists() and not force:
        _logger.error(f"Config already exists: {config_file} (use --force to overwrite)")
        raise typer.Exit(1)

    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(create_default_config())
    _logger.info(f"Created config: {config_file}")

    typer.echo("\n✅ lorekeeper configuration initialized")
    typer.echo(f"   Config: {config_file}")
    raise typer.Exit(0)


# =============================================================================
# check command
# =============================================================================


@app.command()
def check(
    repo: RepoArgument,
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider",
            "-p",
            help="LLM provider to check (overrides config)",
        ),
    ] = None,
    api_key: Annotated[
        str | None,
        typer.Option(
            "--api-key",
            "-k",
            help="API key to check",
        ),
    ] = None,
    base_url: Annotated[
        str | None,
        typer.Option(
            "--base-url",
            help="Custom API endpoint",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results as JSON",
        ),
    ] = False,
) -> None:
    """Validate the environment before analysis.

    Exit codes:
        0: All required checks passed
        1: One or more required checks failed
    """
    from lorekeeper.utils.preflight import PreflightChecker

    config = _load_config(repo)
    try:
        llm = _effective_llm_config(config.llm, provider, None, api_key, base_url)
    except ValueError as e:
        _logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)

    result = PreflightChecker().check_all(repo, llm)

    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        raise typer.Exit(0 if result.success else 1)

    typer.echo("\n🔍 Preflight Check Results\n")
    for check_result in result.checks:
        icon = "✅" if check_result.available else "❌"
        version_str = f" ({check_result.version})" if check_result.version else ""
        typer.echo(f"  {icon} {check_result.name}{version_str}")
        if check_result.message:
            typer.echo(f"     └─ {check_result.message}")

    typer.echo()
    if not result.success:
        typer.echo("❌ Preflight check FAILED")
        for error in result.errors:
            typer.echo(f"   • {error}")
        raise typer.Exit(1)

    typer.echo("✅ All preflight checks passed")
    raise typer.Exit(0)


if __name__ == "__main__":
    app()

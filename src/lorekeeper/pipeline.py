"""Resumable analysis pipeline.

Runs the fixed sequence of analysis steps against one repository. Every step
is recorded in the step ledger; a run resumes after the most recently
completed step, so an interrupted or failed run picks up where it stopped.
Each step gathers its evidence into a token-budgeted context, asks its role
agent (with retries) and stores the answer as knowledge. The final step
consolidates all knowledge into the output document.
"""

import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NoReturn

from lorekeeper.config import LorekeeperConfig
from lorekeeper.context.builder import ContextBuilder
from lorekeeper.context.summarizer import AgentSummarizer
from lorekeeper.evidence import EvidenceProvider
from lorekeeper.llm.client import AgentSet
from lorekeeper.llm.prompts import build_step_prompt
from lorekeeper.llm.retry import RetryExhaustedError, RetryingCompletionClient, RetryPolicy
from lorekeeper.models.analysis import AnalysisStep, KnowledgeEntry, StepType
from lorekeeper.storage.db import Database, database_path, state_dir
from lorekeeper.storage.knowledge import KnowledgeStore
from lorekeeper.storage.ledger import StepLedger
from lorekeeper.storage.lock import RepositoryLock

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "interrupted: step did not finish in a previous run"
NO_DOCUMENTATION_OUTPUT = "No documentation found"

# Levels of the directory tree shown to the basic step
BASIC_TREE_DEPTH = 3

KNOWLEDGE_TITLE = "Accumulated Knowledge"

STEP_DESCRIPTIONS: dict[StepType, str] = {
    StepType.BASIC: "Basic repository analysis",
    StepType.README: "README and root file analysis",
    StepType.DOCUMENTATION: "Documentation analysis",
    StepType.PACKAGE: "Package structure analysis",
    StepType.CODING: "Coding convention analysis",
    StepType.ARCHITECTURE: "Architecture analysis",
    StepType.FINAL_CONSOLIDATION: "Final consolidation",
}


@dataclass(frozen=True)
class KnowledgeTarget:
    """Where a step's output lands in the knowledge store."""

    category: str
    title: str
    relevance_score: float


STEP_KNOWLEDGE: dict[StepType, KnowledgeTarget] = {
    StepType.BASIC: KnowledgeTarget("basic", "Repository Basic Overview", 1.0),
    StepType.README: KnowledgeTarget("readme", "README Analysis", 0.95),
    StepType.DOCUMENTATION: KnowledgeTarget("documentation", "Documentation Analysis", 0.9),
    StepType.PACKAGE: KnowledgeTarget("package", "Package Structure", 0.8),
    StepType.CODING: KnowledgeTarget("coding", "Coding Conventions", 0.7),
    StepType.ARCHITECTURE: KnowledgeTarget("architecture", "Architecture Overview", 0.9),
}


class AnalysisFailedError(Exception):
    """Raised when a step failed and the run stopped.

    Attributes:
        step_type: The step that failed
        cause: The last error observed for that step
    """

    def __init__(self, step_type: StepType, cause: BaseException) -> None:
        self.step_type = step_type
        self.cause = cause
        super().__init__(f"{step_type.value} step failed: {cause}")


@dataclass
class AnalysisOutcome:
    """Summary of one analyze() run.

    Attributes:
        steps_run: Steps executed by this run, in order
        resumed_after: Last completed step found at start, if any
        output_path: Where the consolidated document was written
        interrupted_steps: Dangling rows marked failed at start
    """

    steps_run: list[StepType] = field(default_factory=list)
    resumed_after: StepType | None = None
    output_path: Path | None = None
    interrupted_steps: int = 0


@dataclass
class AnalysisStatusReport:
    """Read-only view of a repository's analysis state."""

    repository: Path
    steps: list[AnalysisStep]
    knowledge_count: int
    last_completed: StepType | None
    next_step: StepType

    @property
    def is_complete(self) -> bool:
        return self.last_completed is StepType.FINAL_CONSOLIDATION

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": str(self.repository),
            "steps": [step.to_dict() for step in self.steps],
            "knowledge_count": self.knowledge_count,
            "last_completed": self.last_completed.value if self.last_completed else None,
            "next_step": self.next_step.value,
            "complete": self.is_complete,
        }


def pending_steps(ledger: StepLedger) -> list[StepType]:
    """Steps the next run executes, in order.

    Nothing completed: every step. Otherwise the steps after the most recently
    completed one; after the final step only the final step, which is safe to
    regenerate.
    """
    last = ledger.most_recent_completed()
    if last is None:
        return StepType.ordered()
    if last.step_type.is_final:
        return [StepType.FINAL_CONSOLIDATION]

    following = last.step_type.next()
    assert following is not None
    return StepType.ordered()[following.position :]


def build_status(repo_path: Path, db: Database) -> AnalysisStatusReport:
    ledger = StepLedger(db)
    last = ledger.most_recent_completed()
    return AnalysisStatusReport(
        repository=repo_path,
        steps=ledger.list_steps(),
        knowledge_count=KnowledgeStore(db).count(),
        last_completed=last.step_type if last else None,
        next_step=pending_steps(ledger)[0],
    )


class AnalysisPipeline:
    """Runs the analysis steps for one repository.

    The caller owns the database and guarantees that only one pipeline runs
    per repository at a time (see run_analysis).
    """

    def __init__(
        self,
        repo_path: Path,
        config: LorekeeperConfig,
        agents: AgentSet,
        db: Database,
        evidence: EvidenceProvider | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the pipeline.

        Args:
            repo_path: Repository to analyze
            config: Effective configuration
            agents: One completion agent per role
            db: Open state database for this repository
            evidence: Evidence source (defaults to reading repo_path)
            clock: Monotonic clock used for step deadlines
        """
        self.repo_path = repo_path.resolve()
        self.config = config
        self.agents = agents
        self.db = db
        self.ledger = StepLedger(db)
        self.knowledge = KnowledgeStore(db)
        self.evidence = evidence or EvidenceProvider(self.repo_path, config.analysis)
        self.summarizer = AgentSummarizer(agents.summarization)
        self.policy = RetryPolicy(
            max_retries=config.analysis.max_retries,
            retry_delay_seconds=config.analysis.retry_delay_seconds,
            deadline_seconds=config.analysis.step_timeout_seconds,
        )
        self._clock = clock

    @property
    def output_path(self) -> Path:
        return self.config.output.resolve(self.repo_path)

    # =========================================================================
    # Run control
    # =========================================================================

    def pending_steps(self) -> list[StepType]:
        """Steps analyze() would run, based on the last completed step."""
        return pending_steps(self.ledger)

    def analyze(self) -> AnalysisOutcome:
        """Run every pending step in order.

        Returns:
            What this run did

        Raises:
            AnalysisFailedError: If a step failed after its retries
            StorageError: If the state database failed
        """
        outcome = AnalysisOutcome()
        outcome.interrupted_steps = self.ledger.fail_dangling(INTERRUPTED_MESSAGE)

        last = self.ledger.most_recent_completed()
        steps = self.pending_steps()

        if last is None:
            logger.info("Starting full analysis of %s", self.repo_path.name)
        elif last.step_type.is_final:
            outcome.resumed_after = last.step_type
            logger.info("Analysis already complete, regenerating the final document")
        else:
            outcome.resumed_after = last.step_type
            logger.info(
                "Resuming after %s step (%d step(s) remaining)",
                last.step_type.value,
                len(steps),
            )

        for step_type in steps:
            self._run_step(step_type)
            outcome.steps_run.append(step_type)

        outcome.output_path = self.output_path
        logger.info("Analysis complete: %s", outcome.output_path)
        return outcome

    def status(self) -> AnalysisStatusReport:
        """Report ledger and knowledge state without running anything."""
        return build_status(self.repo_path, self.db)

    # =========================================================================
    # Steps
    # =========================================================================

    def _run_step(self, step_type: StepType) -> None:
        step = AnalysisStep.start(step_type, STEP_DESCRIPTIONS[step_type])
        self.ledger.insert(step)
        logger.info(
            "Step %d/%d: %s",
            step_type.position + 1,
            len(StepType.ordered()),
            STEP_DESCRIPTIONS[step_type],
        )

        if step_type is StepType.DOCUMENTATION and not self.evidence.has_documentation():
            logger.info("No documentation found, skipping documentation analysis")
            self.ledger.update_completion(step.id, output=NO_DOCUMENTATION_OUTPUT)
            return

        prompt = build_step_prompt(
            step_type,
            self.evidence.repository_name,
            self.config.output.extra_context,
        )
        client = RetryingCompletionClient(
            self.agents.for_step(step_type),
            self.summarizer,
            self.policy,
            clock=self._clock,
            name=f"{step_type.value} step",
        )

        try:
            output = client.complete(prompt, lambda: self.prepare_context(step_type))
        except RetryExhaustedError as e:
            self._fail(step, e.last_error)

        if step_type.is_final:
            try:
                self._write_output(output)
            except OSError as e:
                self._fail(step, e)
            self.ledger.update_completion(step.id, output=output)
            return

        target = STEP_KNOWLEDGE[step_type]
        entry = KnowledgeEntry(
            category=target.category,
            title=target.title,
            content=output,
            relevance_score=target.relevance_score,
        )
        with self.db.transaction():
            self.knowledge.insert(entry)
            self.ledger.update_completion(step.id, output=output)

        logger.debug("Stored %s knowledge (%d chars)", target.category, len(output))

    def _fail(self, step: AnalysisStep, error: BaseException) -> NoReturn:
        logger.error("%s step failed: %s", step.step_type.value, error)
        self.ledger.update_completion(step.id, error=str(error) or type(error).__name__)
        raise AnalysisFailedError(step.step_type, error) from error

    def _write_output(self, content: str) -> None:
        """Replace the output document in one rename."""
        path = self.output_path
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Wrote %s", path)

    # =========================================================================
    # Evidence
    # =========================================================================

    def prepare_context(self, step_type: StepType) -> ContextBuilder:
        """Gather a step's evidence into a fresh builder."""
        builder = ContextBuilder(self.config.analysis.max_context_tokens)
        evidence = self.evidence

        if step_type is StepType.BASIC:
            self._add_files(builder, evidence.manifests(), 90)
            tree_depth = min(BASIC_TREE_DEPTH, self.config.analysis.max_depth)
            builder.add_content(evidence.directory_tree(tree_depth), 70, "Directory Structure")
            self._add_files(builder, evidence.key_source_files(), 50)

        elif step_type is StepType.README:
            self._add_files(builder, evidence.readme_files(), 90)
            self._add_files(builder, evidence.root_files(), 80)
            self._add_knowledge(builder, 60)

        elif step_type is StepType.DOCUMENTATION:
            self._add_knowledge(builder, 90)
            self._add_files(builder, evidence.documentation_files(), 70)

        elif step_type is StepType.PACKAGE:
            self._add_knowledge(builder, 90)
            builder.add_content(evidence.directory_tree(), 80, "Directory Structure")
            self._add_files(builder, evidence.manifests(), 70)

        elif step_type is StepType.CODING:
            self._add_knowledge(builder, 90)
            self._add_files(builder, evidence.key_source_files(), 60)
            self._add_files(builder, evidence.test_files(), 60)

        elif step_type is StepType.ARCHITECTURE:
            self._add_knowledge(builder, 100, can_summarize=False)
            builder.add_content(evidence.directory_tree(), 60, "Directory Structure")
            self._add_files(builder, evidence.manifests(), 50)

        else:
            self._add_knowledge(builder, 90)

        logger.debug(
            "%s context: %d item(s), ~%d tokens",
            step_type.value,
            len(builder),
            builder.total_estimated_tokens(),
        )
        return builder

    def _add_files(
        self,
        builder: ContextBuilder,
        files: list[tuple[str, str]],
        priority: int,
    ) -> None:
        for path, content in files:
            builder.add_content(content, priority, path)

    def _add_knowledge(
        self,
        builder: ContextBuilder,
        priority: int,
        can_summarize: bool = True,
    ) -> None:
        knowledge = self.knowledge.render()
        if knowledge:
            builder.add_content(knowledge, priority, KNOWLEDGE_TITLE, can_summarize)


def run_analysis(
    repo_path: Path,
    config: LorekeeperConfig,
    agents: AgentSet,
) -> AnalysisOutcome:
    """Run the pipeline under the repository lock.

    Raises:
        LockError: If another run holds the repository
        AnalysisFailedError: If a step failed
        StorageError: If the state database failed
    """
    repo_path = repo_path.resolve()
    with RepositoryLock(state_dir(repo_path)):
        with Database.for_repository(repo_path) as db:
            pipeline = AnalysisPipeline(repo_path, config, agents, db)
            return pipeline.analyze()


def read_status(repo_path: Path) -> AnalysisStatusReport:
    """Report a repository's analysis state.

    A repository that was never analyzed is reported as not started, without
    creating its state directory.
    """
    repo_path = repo_path.resolve()
    if not database_path(repo_path).exists():
        with Database.in_memory() as db:
            return build_status(repo_path, db)

    with Database.for_repository(repo_path) as db:
        return build_status(repo_path, db)

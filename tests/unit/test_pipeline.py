"""Unit tests for the resumable analysis pipeline."""

import dataclasses
import os
from pathlib import Path

import pytest

from conftest import RecordingSleep, ScriptedAgent
from lorekeeper.config import AnalysisConfig, LorekeeperConfig, OutputConfig
from lorekeeper.llm.client import AgentSet, LLMError
from lorekeeper.models.analysis import AnalysisStep, StepStatus, StepType
from lorekeeper.pipeline import (
    INTERRUPTED_MESSAGE,
    NO_DOCUMENTATION_OUTPUT,
    AnalysisFailedError,
    AnalysisPipeline,
    read_status,
    run_analysis,
)
from lorekeeper.storage.db import Database, state_dir
from lorekeeper.storage.knowledge import KnowledgeStore
from lorekeeper.storage.ledger import StepLedger


def _pipeline(
    repo: Path,
    config: LorekeeperConfig,
    agent_set: AgentSet,
    db: Database,
) -> AnalysisPipeline:
    return AnalysisPipeline(repo, config, agent_set, db)


class TestFullRun:
    """Tests for a run from an empty ledger."""

    def test_runs_all_steps_and_writes_output(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test seven completed steps, six knowledge entries and the output file."""
        pipeline = _pipeline(sample_repo, fast_config, agent_set, db)

        outcome = pipeline.analyze()

        assert outcome.steps_run == StepType.ordered()
        assert outcome.resumed_after is None
        assert outcome.output_path == sample_repo / "README.ai.md"
        assert (sample_repo / "README.ai.md").read_text() == "final_consolidation output"

        steps = StepLedger(db).list_steps()
        assert [s.step_type for s in steps] == StepType.ordered()
        assert all(s.status is StepStatus.COMPLETED for s in steps)
        assert steps[-1].output_data == "final_consolidation output"

        assert KnowledgeStore(db).count() == 6
        assert agents["summarization"].calls == []
        assert recording_sleep.delays == []

    def test_knowledge_feeds_later_steps(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test earlier outputs appear in later contexts."""
        _pipeline(sample_repo, fast_config, agent_set, db).analyze()

        basic_prompt, basic_context = agents["basic"].calls[0]
        readme_context = agents["readme"].calls[0][1]
        final_context = agents["final_consolidation"].calls[0][1]

        assert "Repository: demo" in basic_prompt
        assert "Accumulated Knowledge" not in basic_context
        assert "## basic - Repository Basic Overview\nbasic output" in readme_context
        assert "=== README.md ===" in readme_context
        assert "## architecture - Architecture Overview\narchitecture output" in final_context

    def test_context_carries_evidence(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test each step receives the evidence it is meant to read."""
        _pipeline(sample_repo, fast_config, agent_set, db).analyze()

        basic_context = agents["basic"].calls[0][1]
        assert "=== pyproject.toml ===" in basic_context
        assert "=== Directory Structure ===" in basic_context
        assert "=== src/demo/main.py ===" in basic_context

        docs_context = agents["documentation"].calls[0][1]
        assert "=== docs/guide.md ===" in docs_context

        coding_context = agents["coding"].calls[0][1]
        assert "=== tests/test_greeting.py ===" in coding_context

    def test_extra_context_in_every_prompt(
        self,
        sample_repo: Path,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test operator instructions reach every step."""
        config = LorekeeperConfig(output=OutputConfig(extra_context="Mention the greeting API."))

        _pipeline(sample_repo, config, agent_set, db).analyze()

        for role in ("basic", "readme", "coding", "final_consolidation"):
            assert "Mention the greeting API." in agents[role].calls[0][0]

    def test_custom_output_path(
        self,
        sample_repo: Path,
        tmp_path: Path,
        agent_set: AgentSet,
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test the document is written where the config points."""
        target = tmp_path / "out" / "KNOWLEDGE.md"
        config = LorekeeperConfig(output=OutputConfig(path=str(target)))

        _pipeline(sample_repo, config, agent_set, db).analyze()

        assert target.read_text() == "final_consolidation output"
        assert not (sample_repo / "README.ai.md").exists()


class TestDocumentationSkip:
    """Tests for repositories without documentation."""

    def test_skips_without_model_call(
        self,
        bare_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test the documentation step completes without asking its agent."""
        _pipeline(bare_repo, fast_config, agent_set, db).analyze()

        assert agents["documentation"].calls == []
        docs_step = next(
            s for s in StepLedger(db).list_steps() if s.step_type is StepType.DOCUMENTATION
        )
        assert docs_step.status is StepStatus.COMPLETED
        assert docs_step.output_data == NO_DOCUMENTATION_OUTPUT

        categories = [e.category for e in KnowledgeStore(db).all_ordered()]
        assert "documentation" not in categories
        assert len(categories) == 5

    def test_skips_when_no_doc_is_readable(
        self,
        bare_repo: Path,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test doc files that cannot be read count as no documentation."""
        (bare_repo / "docs").mkdir()
        (bare_repo / "docs" / "legacy.md").write_bytes(b"\xff\xfe\x00 not utf-8")
        (bare_repo / "docs" / "huge.md").write_text("x" * 2048)
        config = LorekeeperConfig(
            analysis=AnalysisConfig(retry_delay_seconds=1.0, max_file_size=1024)
        )

        _pipeline(bare_repo, config, agent_set, db).analyze()

        assert agents["documentation"].calls == []
        docs_step = next(
            s for s in StepLedger(db).list_steps() if s.step_type is StepType.DOCUMENTATION
        )
        assert docs_step.output_data == NO_DOCUMENTATION_OUTPUT


class TestResume:
    """Tests for resuming after earlier runs."""

    def test_resume_after_basic(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test a ledger with Basic completed resumes at README."""
        ledger = StepLedger(db)
        basic = AnalysisStep.start(StepType.BASIC, "earlier run")
        ledger.insert(basic)
        ledger.update_completion(basic.id, output="earlier basic")

        pipeline = _pipeline(sample_repo, fast_config, agent_set, db)
        assert pipeline.pending_steps()[0] is StepType.README

        outcome = pipeline.analyze()

        assert outcome.resumed_after is StepType.BASIC
        assert outcome.steps_run == StepType.ordered()[1:]
        assert agents["basic"].calls == []
        assert len(ledger.list_steps()) == 7

    def test_rerun_after_completion_regenerates_final_only(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test a completed analysis reruns only the final step."""
        pipeline = _pipeline(sample_repo, fast_config, agent_set, db)
        pipeline.analyze()
        agents["final_consolidation"].default = "second document"

        outcome = pipeline.analyze()

        assert outcome.steps_run == [StepType.FINAL_CONSOLIDATION]
        assert outcome.resumed_after is StepType.FINAL_CONSOLIDATION
        assert len(agents["basic"].calls) == 1
        assert KnowledgeStore(db).count() == 6
        assert (sample_repo / "README.ai.md").read_text() == "second document"

    def test_output_write_failure_keeps_previous_document(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a failed document write fails the final step and leaves the old file."""
        pipeline = _pipeline(sample_repo, fast_config, agent_set, db)
        pipeline.analyze()
        previous = (sample_repo / "README.ai.md").read_text()
        agents["final_consolidation"].default = "replacement document"

        def failing_replace(src: object, dst: object) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)

        with pytest.raises(AnalysisFailedError) as exc_info:
            pipeline.analyze()

        assert exc_info.value.step_type is StepType.FINAL_CONSOLIDATION
        final = StepLedger(db).list_steps()[-1]
        assert final.step_type is StepType.FINAL_CONSOLIDATION
        assert final.status is StepStatus.FAILED
        assert final.error_message == "disk full"
        assert (sample_repo / "README.ai.md").read_text() == previous
        assert list(sample_repo.glob(".README.ai.md.*")) == []

    def test_failure_then_resume(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test a step failing all retries stops the run and is retried next run."""
        agents["readme"].responses = [LLMError("overloaded")] * 3
        pipeline = _pipeline(sample_repo, fast_config, agent_set, db)

        with pytest.raises(AnalysisFailedError) as exc_info:
            pipeline.analyze()

        assert exc_info.value.step_type is StepType.README
        assert "Readme step failed: overloaded" in str(exc_info.value)
        assert len(agents["readme"].calls) == 3
        assert recording_sleep.delays == [1.0, 1.0]
        assert agents["documentation"].calls == []
        assert not (sample_repo / "README.ai.md").exists()

        steps = StepLedger(db).list_steps()
        assert [(s.step_type, s.status) for s in steps] == [
            (StepType.BASIC, StepStatus.COMPLETED),
            (StepType.README, StepStatus.FAILED),
        ]
        assert steps[1].error_message == "overloaded"

        outcome = pipeline.analyze()

        assert outcome.steps_run[0] is StepType.README
        assert len(agents["basic"].calls) == 1
        assert (sample_repo / "README.ai.md").exists()

    def test_retry_recovers_within_step(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test a transient failure is absorbed by the retry loop."""
        agents["coding"].responses = [LLMError("timeout"), "coding after retry"]

        _pipeline(sample_repo, fast_config, agent_set, db).analyze()

        assert recording_sleep.delays == [1.0]
        coding = next(s for s in StepLedger(db).list_steps() if s.step_type is StepType.CODING)
        assert coding.output_data == "coding after retry"
        assert len(StepLedger(db).list_steps()) == 7

    def test_dangling_row_marked_failed(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test an in-progress row left by a crash is failed before the run starts."""
        ledger = StepLedger(db)
        dangling = AnalysisStep.start(StepType.BASIC, "crashed run")
        ledger.insert(dangling)

        outcome = _pipeline(sample_repo, fast_config, agent_set, db).analyze()

        assert outcome.interrupted_steps == 1
        loaded = ledger.get(dangling.id)
        assert loaded is not None
        assert loaded.status is StepStatus.FAILED
        assert loaded.error_message == INTERRUPTED_MESSAGE
        assert outcome.steps_run[0] is StepType.BASIC
        assert ledger.in_progress() == []

    def test_prepare_failure_is_retried(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test an evidence error consumes an attempt instead of failing the run."""
        pipeline = _pipeline(sample_repo, fast_config, agent_set, db)
        original = pipeline.prepare_context
        failures = []

        def flaky(step_type: StepType):
            if step_type is StepType.PACKAGE and not failures:
                failures.append(step_type)
                raise OSError("disk hiccup")
            return original(step_type)

        pipeline.prepare_context = flaky  # type: ignore[method-assign]

        pipeline.analyze()

        assert failures == [StepType.PACKAGE]
        assert recording_sleep.delays == [1.0]


class TestBudgetedRun:
    """Tests for runs under a small context budget."""

    def test_summarization_agent_used(
        self,
        sample_repo: Path,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test oversized evidence is summarized by the summarization agent."""
        (sample_repo / "README.md").write_text("# Demo\n\n" + "Long description. " * 200)
        config = LorekeeperConfig(analysis=AnalysisConfig(max_context_tokens=400))
        agents["summarization"].default = "short summary"

        _pipeline(sample_repo, config, agent_set, db).analyze()

        assert agents["summarization"].calls
        readme_context = agents["readme"].calls[0][1]
        assert "=== README.md (Summarized) ===\nshort summary" in readme_context


class TestStatus:
    """Tests for status reporting."""

    def test_status_in_pipeline(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        db: Database,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test the report reflects ledger and knowledge state."""
        pipeline = _pipeline(sample_repo, fast_config, agent_set, db)
        before = pipeline.status()

        assert before.steps == []
        assert before.last_completed is None
        assert before.next_step is StepType.BASIC
        assert not before.is_complete

        pipeline.analyze()
        after = pipeline.status()

        assert after.is_complete
        assert after.knowledge_count == 6
        assert after.next_step is StepType.FINAL_CONSOLIDATION
        assert after.to_dict()["complete"] is True

    def test_read_status_never_analyzed(self, sample_repo: Path) -> None:
        """Test reading status does not create the state directory."""
        report = read_status(sample_repo)

        assert report.steps == []
        assert report.next_step is StepType.BASIC
        assert not state_dir(sample_repo).exists()


class TestRunAnalysis:
    """Tests for the locked, file-backed entry point."""

    def test_run_persists_between_calls(
        self,
        sample_repo: Path,
        fast_config: LorekeeperConfig,
        agent_set: AgentSet,
        agents: dict[str, ScriptedAgent],
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test a failed file-backed run resumes in a later call."""
        agents["package"].responses = [LLMError("down")]
        config = dataclasses.replace(
            fast_config,
            analysis=dataclasses.replace(fast_config.analysis, max_retries=1),
        )

        with pytest.raises(AnalysisFailedError):
            run_analysis(sample_repo, config, agent_set)

        report = read_status(sample_repo)
        assert report.last_completed is StepType.DOCUMENTATION
        assert report.next_step is StepType.PACKAGE
        assert report.knowledge_count == 3

        outcome = run_analysis(sample_repo, config, agent_set)

        assert outcome.resumed_after is StepType.DOCUMENTATION
        assert outcome.steps_run[0] is StepType.PACKAGE
        assert read_status(sample_repo).is_complete
        assert not (state_dir(sample_repo) / "analyze.lock").exists()

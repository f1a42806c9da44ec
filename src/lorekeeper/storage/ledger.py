"""Durable step ledger.

The ledger is append-oriented: rows are inserted when a step starts and
updated exactly once when it completes or fails. Rows are never deleted.
The most recent completed row determines where the next run resumes.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime

from lorekeeper.models.analysis import AnalysisStep, StepStatus, StepType
from lorekeeper.storage.db import Database, StorageError, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


class StepLedger:
    """Data access layer for the analysis_steps table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, step: AnalysisStep) -> None:
        """Record a newly started step."""
        self._db.execute(
            """INSERT INTO analysis_steps
            (id, step_type, status, input_data, output_data, error_message, created_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                step.id,
                step.step_type.value,
                step.status.value,
                step.input_data,
                step.output_data,
                step.error_message,
                format_timestamp(step.created_at),
                format_timestamp(step.completed_at) if step.completed_at else None,
            ),
        )

    def update_completion(
        self,
        step_id: str,
        output: str | None = None,
        error: str | None = None,
    ) -> AnalysisStep:
        """Mark an in-progress step as completed (output) or failed (error).

        Exactly one of output or error must be given. Completed rows are
        immutable, so only in-progress rows are updated.

        Returns:
            The updated step

        Raises:
            ValueError: If both or neither of output/error are given
            StorageError: If the step does not exist or is not in progress
        """
        if (output is None) == (error is None):
            raise ValueError("Exactly one of output or error must be provided")

        now = format_timestamp(datetime.now(UTC))
        if output is not None:
            cursor = self._db.execute(
                """UPDATE analysis_steps
                SET status = ?, output_data = ?, completed_at = ?
                WHERE id = ? AND status = ?""",
                (
                    StepStatus.COMPLETED.value,
                    output,
                    now,
                    step_id,
                    StepStatus.IN_PROGRESS.value,
                ),
            )
        else:
            cursor = self._db.execute(
                """UPDATE analysis_steps
                SET status = ?, error_message = ?, completed_at = ?
                WHERE id = ? AND status = ?""",
                (
                    StepStatus.FAILED.value,
                    error,
                    now,
                    step_id,
                    StepStatus.IN_PROGRESS.value,
                ),
            )

        if cursor.rowcount != 1:
            raise StorageError(f"Step {step_id} is not in progress")

        step = self.get(step_id)
        assert step is not None
        return step

    def get(self, step_id: str) -> AnalysisStep | None:
        row = self._db.fetchone("SELECT * FROM analysis_steps WHERE id = ?", (step_id,))
        return self._row_to_step(row) if row else None

    def most_recent_completed(self) -> AnalysisStep | None:
        """Return the latest completed step by creation time, if any."""
        row = self._db.fetchone(
            """SELECT * FROM analysis_steps WHERE status = ?
            ORDER BY created_at DESC, rowid DESC LIMIT 1""",
            (StepStatus.COMPLETED.value,),
        )
        return self._row_to_step(row) if row else None

    def in_progress(self, step_type: StepType | None = None) -> list[AnalysisStep]:
        """Return steps still marked in progress, optionally for one step type."""
        query = "SELECT * FROM analysis_steps WHERE status = ?"
        params: list = [StepStatus.IN_PROGRESS.value]
        if step_type is not None:
            query += " AND step_type = ?"
            params.append(step_type.value)
        query += " ORDER BY created_at ASC, rowid ASC"
        return [self._row_to_step(row) for row in self._db.fetchall(query, tuple(params))]

    def fail_dangling(self, reason: str) -> int:
        """Mark every in-progress row as failed.

        A row left in progress can only come from a run that stopped
        ungracefully, since runs are serialized per repository.

        Returns:
            Number of rows marked failed
        """
        dangling = self.in_progress()
        for step in dangling:
            logger.warning(
                "Marking interrupted %s step %s as failed",
                step.step_type.value,
                step.id,
            )
            self.update_completion(step.id, error=reason)
        return len(dangling)

    def list_steps(self) -> list[AnalysisStep]:
        """Return all ledger rows in creation order."""
        rows = self._db.fetchall(
            "SELECT * FROM analysis_steps ORDER BY created_at ASC, rowid ASC"
        )
        return [self._row_to_step(row) for row in rows]

    def _row_to_step(self, row: sqlite3.Row) -> AnalysisStep:
        return AnalysisStep(
            id=row["id"],
            step_type=StepType(row["step_type"]),
            status=StepStatus(row["status"]),
            input_data=row["input_data"],
            output_data=row["output_data"],
            error_message=row["error_message"],
            created_at=parse_timestamp(row["created_at"]),  # type: ignore[arg-type]
            completed_at=parse_timestamp(row["completed_at"]),
        )

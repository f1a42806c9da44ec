"""Analysis ledger and knowledge entities.

This module contains the persisted entities of an analysis run:
- StepType: The fixed, ordered set of analysis steps
- StepStatus: Lifecycle status of a single step
- AnalysisStep: One row of the step ledger
- KnowledgeEntry: One unit of accumulated analysis output
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class StepType(Enum):
    """Analysis steps in canonical execution order.

    Values are the strings persisted in the ledger.
    """

    BASIC = "Basic"
    README = "Readme"
    DOCUMENTATION = "Documentation"
    PACKAGE = "Package"
    CODING = "Coding"
    ARCHITECTURE = "Architecture"
    FINAL_CONSOLIDATION = "FinalConsolidation"

    @classmethod
    def ordered(cls) -> list["StepType"]:
        """Return all step types in canonical order."""
        return list(cls)

    @property
    def position(self) -> int:
        """Zero-based index of this step in the canonical order."""
        return StepType.ordered().index(self)

    def next(self) -> "StepType | None":
        """Return the step following this one, or None after the last step."""
        steps = StepType.ordered()
        index = self.position + 1
        return steps[index] if index < len(steps) else None

    @property
    def is_final(self) -> bool:
        """Return True for the consolidation step."""
        return self is StepType.FINAL_CONSOLIDATION


class StepStatus(Enum):
    """Status of a ledger step."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass
class AnalysisStep:
    """Single entry in the step ledger.

    Attributes:
        step_type: Which analysis step this row records
        input_data: Description of what was fed to the model (audit/debug)
        status: Current lifecycle status
        id: Opaque unique id
        output_data: Model output once completed
        error_message: Error message once failed
        created_at: When the step started (UTC)
        completed_at: When the step completed (UTC)
    """

    step_type: StepType
    input_data: str
    status: StepStatus = StepStatus.IN_PROGRESS
    id: str = field(default_factory=_new_id)
    output_data: str | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        """Ensure timestamps are timezone-aware UTC."""
        self.created_at = _ensure_utc(self.created_at)
        if self.completed_at is not None:
            self.completed_at = _ensure_utc(self.completed_at)

    @classmethod
    def start(cls, step_type: StepType, input_data: str) -> "AnalysisStep":
        """Create a fresh in-progress step with a generated id."""
        return cls(step_type=step_type, input_data=input_data)

    @property
    def is_completed(self) -> bool:
        return self.status is StepStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "step_type": self.step_type.value,
            "status": self.status.value,
            "input_data": self.input_data,
            "output_data": self.output_data,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class KnowledgeEntry:
    """Durably stored unit of analysis output.

    Attributes:
        category: Coarse label (basic, documentation, architecture, ...)
        title: Human-readable title
        content: The retained text
        relevance_score: Ordering weight in [0, 1]
        subcategory: Optional finer label (e.g. a file path)
        id: Opaque unique id
        created_at: Insertion timestamp (UTC)
        updated_at: Last update timestamp (UTC), equal to created_at on insert
    """

    category: str
    title: str
    content: str
    relevance_score: float = 1.0
    subcategory: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate score and normalize timestamps."""
        if not 0.0 <= self.relevance_score <= 1.0:
            raise ValueError(
                f"relevance_score must be within [0, 1]. Got: {self.relevance_score}"
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at or self.created_at)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "category": self.category,
            "subcategory": self.subcategory,
            "title": self.title,
            "content": self.content,
            "relevance_score": self.relevance_score,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

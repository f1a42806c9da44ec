"""lorekeeper data models.

This module exports all core entities used throughout the application:
- StepType: Fixed, ordered analysis steps
- StepStatus: Lifecycle status of a ledger step
- AnalysisStep: One row of the step ledger
- KnowledgeEntry: One unit of accumulated knowledge
- LLMConfig: LLM provider configuration
"""

from lorekeeper.models.analysis import (
    AnalysisStep,
    KnowledgeEntry,
    StepStatus,
    StepType,
)
from lorekeeper.models.llm_config import VALID_PROVIDERS, LLMConfig

__all__ = [
    "AnalysisStep",
    "KnowledgeEntry",
    "LLMConfig",
    "StepStatus",
    "StepType",
    "VALID_PROVIDERS",
]

"""lorekeeper utility modules.

- logging: Standardized logging with human/verbose/JSON modes
- preflight: Environment checks run before analysis
"""

from lorekeeper.utils.logging import configure_from_cli, get_logger, setup_logging
from lorekeeper.utils.preflight import PreflightChecker, PreflightResult, ToolCheck

__all__ = [
    "configure_from_cli",
    "get_logger",
    "setup_logging",
    "PreflightChecker",
    "PreflightResult",
    "ToolCheck",
]

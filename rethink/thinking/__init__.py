"""Recursive thinking: iterative generate/critique/score refinement."""

from rethink.thinking.engine import (
    RecursiveThinkingEngine,
    StopReason,
    ThinkingConfig,
    ThinkingResult,
    ThinkingRound,
    result_to_dict,
)
from rethink.thinking.scoring import parse_critique

__all__ = [
    "RecursiveThinkingEngine",
    "StopReason",
    "ThinkingConfig",
    "ThinkingResult",
    "ThinkingRound",
    "parse_critique",
    "result_to_dict",
]

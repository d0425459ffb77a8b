"""
Model routing based on task complexity and context size.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union

from rewards_ai.config import get_settings


class TaskType(str, Enum):
    """Kinds of request the chat endpoint serves."""

    CHAT = "chat"
    ANALYSIS = "analysis"
    RECOMMENDATION = "recommendation"
    PARSING = "parsing"
    EXTRACTION = "extraction"

    @classmethod
    def parse(cls, value: Union[str, "TaskType", None]) -> "TaskType | None":
        """Return the matching member, or None for unknown strings."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


HIGH_TIER_MODEL = "google/gemini-2.5-pro"
MID_TIER_MODEL = "google/gemini-3-flash-preview"
CHEAP_MODEL = "google/gemini-2.5-flash"

DEFAULT_CONTEXT_THRESHOLD = 10_000

# USD per 1M tokens (approximate)
MODEL_COSTS: Dict[str, Dict[str, float]] = {
    MID_TIER_MODEL: {"input": 0.10, "output": 0.40},
    CHEAP_MODEL: {"input": 0.075, "output": 0.30},
    HIGH_TIER_MODEL: {"input": 1.25, "output": 5.00},
    "openai/gpt-5": {"input": 5.00, "output": 15.00},
    "openai/gpt-5-mini": {"input": 0.15, "output": 0.60},
}


@dataclass(frozen=True)
class ModelSelection:
    """Chosen model and why."""

    model: str
    reason: str


def select_model(
    task_type: Union[str, TaskType],
    context_length: int,
    threshold: int | None = None,
) -> ModelSelection:
    """
    Select a model for a task type and context size.

    Args:
        task_type: One of TaskType, or any string (unknown strings get the default)
        context_length: Size of the assembled context in characters
        threshold: Context size above which reasoning tasks use the high tier

    Returns:
        ModelSelection with model id and reason
    """
    if threshold is None:
        threshold = get_settings().context_length_threshold

    task = TaskType.parse(task_type)
    if task is None:
        return ModelSelection(MID_TIER_MODEL, "Default model")

    if task in (TaskType.ANALYSIS, TaskType.RECOMMENDATION):
        if context_length > threshold:
            return ModelSelection(HIGH_TIER_MODEL, "Large context + complex reasoning")
        return ModelSelection(MID_TIER_MODEL, "Complex reasoning task")

    if task is TaskType.CHAT:
        return ModelSelection(CHEAP_MODEL, "Standard chat interaction")

    if task in (TaskType.PARSING, TaskType.EXTRACTION):
        return ModelSelection(MID_TIER_MODEL, "Precision extraction task")

    raise AssertionError(f"Unhandled task type: {task!r}")


def calculate_cost(
    model: str,
    tokens_input: int,
    tokens_output: int,
    cost_table: Dict[str, Dict[str, float]] | None = None,
) -> float:
    """
    Estimate the USD cost of a request.

    Unknown models are priced as the mid-tier model.
    """
    table = MODEL_COSTS if cost_table is None else cost_table
    costs = table.get(model) or table.get(MID_TIER_MODEL) or MODEL_COSTS[MID_TIER_MODEL]
    return (tokens_input * costs["input"] + tokens_output * costs["output"]) / 1_000_000

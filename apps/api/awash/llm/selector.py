"""Model selection by task profile.

Scores every known gateway model against a rough profile of the request
and returns the best one. The fallback chain in ``awash.llm.router`` still
applies to whatever model is picked here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal


logger = logging.getLogger(__name__)

Quality = Literal["low", "medium", "high", "excellent"]
TaskType = Literal["generation", "edit", "refactor", "chat"]


@dataclass(frozen=True)
class ModelConfig:
    name: str
    max_tokens: int
    supports_images: bool
    reasoning_quality: Quality
    avg_latency_ms: int
    avg_cost: float
    success_rate: float
    best_for: tuple[str, ...] = ()


MODEL_CONFIGS: dict[str, ModelConfig] = {
    "google/gemini-2.5-pro": ModelConfig(
        name="google/gemini-2.5-pro",
        max_tokens=8192,
        supports_images=True,
        reasoning_quality="excellent",
        avg_latency_ms=3000,
        avg_cost=0.15,
        success_rate=0.95,
        best_for=("complex-generation", "refactoring", "architecture"),
    ),
    "google/gemini-2.5-flash": ModelConfig(
        name="google/gemini-2.5-flash",
        max_tokens=8192,
        supports_images=True,
        reasoning_quality="high",
        avg_latency_ms=1500,
        avg_cost=0.08,
        success_rate=0.92,
        best_for=("simple-generation", "direct-edits", "feature-build"),
    ),
    "google/gemini-2.5-flash-lite": ModelConfig(
        name="google/gemini-2.5-flash-lite",
        max_tokens=4096,
        supports_images=False,
        reasoning_quality="medium",
        avg_latency_ms=800,
        avg_cost=0.03,
        success_rate=0.85,
        best_for=("simple-edits", "quick-fixes", "chat"),
    ),
}


@dataclass
class TaskProfile:
    complexity: Literal["low", "medium", "high"]
    type: TaskType
    word_count: int
    requires_reasoning: bool
    speed_priority: Literal["low", "medium", "high"]
    cost_sensitive: bool


@dataclass
class HistoricalPerformance:
    """Observed quality (0-100) and latency of a model."""
    avg_score: float
    avg_latency_ms: float = 0.0


def profile_task(request: str, context: dict[str, Any] | None = None) -> TaskProfile:
    """Build a rough profile of a request.

    Short requests without a project are low complexity; long ones, or any
    request against an existing project, are high.
    """
    context = context or {}
    word_count = len(request.split())
    has_project = bool(context.get("project_id"))

    complexity: Literal["low", "medium", "high"] = "medium"
    if word_count < 20 and not has_project:
        complexity = "low"
    elif word_count > 50 or has_project:
        complexity = "high"

    lower = request.lower()
    task_type: TaskType = "generation"
    if "change" in lower or "update" in lower:
        task_type = "edit"
    elif "refactor" in lower or "optimize" in lower:
        task_type = "refactor"
    elif "?" in lower or lower.startswith("what") or lower.startswith("how"):
        task_type = "chat"

    requires_reasoning = complexity == "high" or task_type == "refactor"
    if task_type == "edit" or complexity == "low":
        speed_priority: Literal["low", "medium", "high"] = "high"
    else:
        speed_priority = "medium"

    return TaskProfile(
        complexity=complexity,
        type=task_type,
        word_count=word_count,
        requires_reasoning=requires_reasoning,
        speed_priority=speed_priority,
        cost_sensitive=complexity == "low" or task_type == "chat",
    )


def score_model(
    model: ModelConfig,
    profile: TaskProfile,
    historical: dict[str, HistoricalPerformance] | None = None,
) -> float:
    score = 0.0

    # Reasoning quality (0-40)
    if profile.requires_reasoning:
        score += {"excellent": 40, "high": 30, "medium": 15}.get(model.reasoning_quality, 0)
    else:
        # excellent is overkill for simple work
        score += {"excellent": 25, "high": 35, "medium": 30}.get(model.reasoning_quality, 0)

    # Speed (0-30)
    if profile.speed_priority == "high":
        if model.avg_latency_ms < 1000:
            score += 30
        elif model.avg_latency_ms < 2000:
            score += 20
        else:
            score += 10
    else:
        score += 20

    # Cost (0-20)
    if profile.cost_sensitive:
        if model.avg_cost < 0.05:
            score += 20
        elif model.avg_cost < 0.10:
            score += 15
        else:
            score += 5
    else:
        score += 10

    # Success rate (0-10)
    score += model.success_rate * 10

    # History (0-20)
    if historical and model.name in historical:
        score += (historical[model.name].avg_score / 100) * 20

    if profile.type in model.best_for or f"{profile.complexity}-{profile.type}" in model.best_for:
        score += 15

    return score


def select_optimal_model(
    profile: TaskProfile,
    historical: dict[str, HistoricalPerformance] | None = None,
) -> str:
    """Return the name of the highest scoring model for ``profile``."""
    scores = sorted(
        ((score_model(model, profile, historical), model.name) for model in MODEL_CONFIGS.values()),
        key=lambda pair: pair[0],
        reverse=True,
    )
    logger.debug(f"Model selection scores: {scores}")
    return scores[0][1]


def get_fallback_models(primary_model: str) -> list[str]:
    """Fallback models in priority order, never including ``primary_model``."""
    fallbacks = ["google/gemini-2.5-flash"]
    if primary_model != "google/gemini-2.5-pro":
        fallbacks.append("google/gemini-2.5-pro")
    if primary_model != "google/gemini-2.5-flash-lite":
        fallbacks.append("google/gemini-2.5-flash-lite")
    return [m for m in fallbacks if m != primary_model]

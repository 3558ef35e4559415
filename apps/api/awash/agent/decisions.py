"""Weighted decision making between implementation options.

Each option is scored on five signals:
- context fit (0.40): preferences and constraints of the request
- history (0.30): how often users were happy choosing it in similar scenarios
- risk (0.15): risk level against the user's tolerance
- effort (0.10): effort against the time constraint
- outcome (0.05): a model's estimate of success, 0.5 when unavailable

Every decision is written to ``decision_logs``; recording the user's actual
choice there feeds the history signal of later decisions.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from awash.agent.prompts import format_decision_outcome_prompt
from awash.database.models import DecisionLog, utcnow
from awash.llm.router import ModelRouter, get_router
from awash.schemas import (
    DecisionContext,
    DecisionOption,
    DecisionResult,
    LLMMessage,
    RecommendationLevel,
    ScoredOption,
)


logger = logging.getLogger(__name__)

WEIGHTS = {
    "context_fit": 0.40,
    "historical": 0.30,
    "risk": 0.15,
    "effort": 0.10,
    "outcome": 0.05,
}

# risk level -> tolerance -> score
RISK_SCORES = {
    "low": {"low": 1.0, "medium": 0.8, "high": 0.6},
    "medium": {"low": 0.7, "medium": 1.0, "high": 0.8},
    "high": {"low": 0.4, "medium": 0.7, "high": 1.0},
}

# effort -> time constraint -> score
EFFORT_SCORES = {
    "low": {"urgent": 1.0, "normal": 0.9, "flexible": 0.8},
    "medium": {"urgent": 0.5, "normal": 1.0, "flexible": 0.9},
    "high": {"urgent": 0.2, "normal": 0.7, "flexible": 1.0},
}

HISTORY_LIMIT = 50
CONFIDENCE_THRESHOLD = 0.75
CLOSE_GAP = 0.1


def categorize_scenario(scenario: str) -> str:
    lower = scenario.lower()
    if "auth" in lower:
        return "authentication"
    if "database" in lower or "data" in lower:
        return "data_management"
    if "ui" in lower or "design" in lower:
        return "user_interface"
    if "api" in lower:
        return "api_integration"
    if "performance" in lower:
        return "optimization"
    return "general"


def score_context_fit(option: DecisionOption, context: DecisionContext) -> float:
    score = 0.5
    prefs = context.user_preferences
    constraints = context.constraints

    if prefs.preferred_approach == "conservative" and option.risk_level == "low":
        score += 0.2
    elif prefs.preferred_approach == "innovative" and option.risk_level == "high":
        score += 0.2
    elif prefs.preferred_approach == "balanced":
        score += 0.1

    if constraints.complexity == "simple" and option.estimated_effort == "low":
        score += 0.15
    elif constraints.complexity == "complex" and option.estimated_effort == "high":
        score += 0.1

    if prefs.speed_vs_quality == "speed" and option.estimated_effort == "low":
        score += 0.15
    elif prefs.speed_vs_quality == "quality" and any("quality" in p.lower() for p in option.pros):
        score += 0.15

    return min(1.0, score)


def score_risk(risk_level: str, tolerance: str | None) -> float:
    return RISK_SCORES[risk_level][tolerance or "medium"]


def score_effort(effort: str, time_constraint: str | None) -> float:
    return EFFORT_SCORES[effort][time_constraint or "normal"]


def recommendation_level(score: float, confidence: float) -> RecommendationLevel:
    weighted = score * confidence
    if weighted > 0.8:
        return RecommendationLevel.HIGHLY_RECOMMENDED
    if weighted > 0.6:
        return RecommendationLevel.RECOMMENDED
    if weighted > 0.4:
        return RecommendationLevel.VIABLE
    return RecommendationLevel.NOT_RECOMMENDED


def option_reasoning(option: DecisionOption, scores: dict[str, float]) -> str:
    reasons = []
    if scores["context_fit"] > 0.7:
        reasons.append("Excellent fit for your requirements")
    elif scores["context_fit"] < 0.4:
        reasons.append("May not fully align with your needs")
    if scores["historical"] > 0.7:
        reasons.append("Strong track record in similar scenarios")
    if option.risk_level == "low":
        reasons.append("Low risk approach")
    elif option.risk_level == "high":
        reasons.append("Higher risk but potentially higher reward")
    if option.estimated_effort == "low":
        reasons.append("Quick to implement")
    return ". ".join(reasons) + "." if reasons else "Balanced trade-offs."


def overall_confidence(ranked: list[ScoredOption]) -> float:
    """Mix of how clearly the winner leads and how consistent its own signals are."""
    if not ranked:
        return 0.0
    if len(ranked) == 1:
        return ranked[0].confidence
    separation = min(1.0, (ranked[0].overall_score - ranked[1].overall_score) * 5)
    return separation * 0.6 + ranked[0].confidence * 0.4


class DecisionEngine:
    """Scores options, recommends one and learns from the choices users make."""

    def __init__(self, session: AsyncSession, router: ModelRouter | None = None):
        self.session = session
        self._router = router

    @property
    def router(self) -> ModelRouter:
        return self._router or get_router()

    async def make_decision(self, options: list[DecisionOption], context: DecisionContext) -> DecisionResult:
        if not options:
            raise ValueError("At least one option is required")

        logger.info(f"Evaluating {len(options)} option(s) for: {context.scenario}")
        history = await self.load_historical_weights(context.scenario)

        scored = await asyncio.gather(*(self.score_option(o, context, history) for o in options))
        ranked = sorted(scored, key=lambda o: o.overall_score, reverse=True)
        best = ranked[0]

        confidence = overall_confidence(ranked)
        close = len(ranked) > 1 and ranked[0].overall_score - ranked[1].overall_score < CLOSE_GAP

        requires_input = confidence < CONFIDENCE_THRESHOLD or close
        input_reason = None
        if confidence < CONFIDENCE_THRESHOLD:
            input_reason = "Multiple viable approaches - your input would help choose the best fit"
        elif close:
            input_reason = "Options are very close in score - your preference matters"

        reasoning = f"{best.name} scores highest ({best.overall_score * 100:.1f}%) because: {best.reasoning}"
        if close:
            reasoning += f" Note: {ranked[1].name} is a close alternative with similar viability."

        log = DecisionLog(
            scenario_type=categorize_scenario(context.scenario),
            scenario_description=context.scenario,
            user_goal=context.user_goal,
            recommended_option=best.id,
            all_options=[{"id": o.id, "score": o.overall_score} for o in ranked],
            confidence_score=confidence,
            reasoning=reasoning,
            requires_user_input=requires_input,
        )
        self.session.add(log)
        await self.session.flush()

        logger.info(f"Decision: {best.name} (confidence {confidence * 100:.1f}%)")
        return DecisionResult(
            decision_id=log.id,
            best_option=best,
            all_options=ranked,
            confidence=confidence,
            reasoning=reasoning,
            requires_user_input=requires_input,
            user_input_reason=input_reason,
        )

    async def score_option(
        self,
        option: DecisionOption,
        context: DecisionContext,
        history: dict[str, float],
    ) -> ScoredOption:
        scores = {
            "context_fit": score_context_fit(option, context),
            "historical": history.get(option.id, 0.5),
            "risk": score_risk(option.risk_level, context.user_preferences.risk_tolerance),
            "effort": score_effort(option.estimated_effort, context.constraints.time),
            "outcome": await self.predict_outcome(option, context),
        }
        overall = sum(scores[name] * weight for name, weight in WEIGHTS.items())
        confidence = max(0.0, 1 - statistics.pstdev(list(scores.values())))

        return ScoredOption(
            **option.model_dump(),
            overall_score=overall,
            confidence=confidence,
            reasoning=option_reasoning(option, scores),
            recommendation_level=recommendation_level(overall, confidence),
        )

    async def predict_outcome(self, option: DecisionOption, context: DecisionContext) -> float:
        """Model estimate of success in [0, 1]; 0.5 if the model can't be asked or answers nonsense."""
        prompt = format_decision_outcome_prompt(
            user_goal=context.user_goal,
            scenario=context.scenario,
            name=option.name,
            description=option.description,
            pros=option.pros,
            cons=option.cons,
        )
        try:
            result = await self.router.chat_completion(
                messages=[LLMMessage(role="user", content=prompt)],
                preferred_model=self.router.backup_model,
                temperature=0.3,
                max_tokens=50,
                max_retries=0,
                enable_emergency_fallback=False,
            )
            return max(0.0, min(1.0, float(result.content.strip())))
        except Exception as e:
            logger.warning(f"Outcome prediction failed for {option.id}, using 0.5: {e}")
            return 0.5

    async def load_historical_weights(self, scenario: str) -> dict[str, float]:
        """Success rate per chosen option over the latest decisions of the same category."""
        result = await self.session.execute(
            select(DecisionLog)
            .where(
                DecisionLog.scenario_type == categorize_scenario(scenario),
                DecisionLog.user_choice.is_not(None),
            )
            .order_by(DecisionLog.created_at.desc())
            .limit(HISTORY_LIMIT)
        )
        counts: dict[str, list[int]] = {}
        for log in result.scalars().all():
            success_total = counts.setdefault(log.user_choice, [0, 0])
            success_total[1] += 1
            if log.was_correct:
                success_total[0] += 1
        return {choice: success / total for choice, (success, total) in counts.items()}


async def record_user_choice(
    session: AsyncSession,
    decision_id: UUID,
    option_id: str,
    was_successful: bool,
    feedback: str | None = None,
) -> DecisionLog | None:
    """Store what the user actually chose; None if the decision doesn't exist."""
    log = await session.get(DecisionLog, decision_id)
    if log is None:
        return None
    log.user_choice = option_id
    log.was_correct = was_successful
    log.user_feedback = feedback
    log.updated_at = utcnow()
    await session.flush()
    logger.info(f"Recorded choice {option_id} for decision {decision_id} (success={was_successful})")
    return log

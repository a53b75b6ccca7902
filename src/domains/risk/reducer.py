"""Reduce evaluated factors to a bounded score, decision and confidence."""

from datetime import UTC, datetime

from .config import DecisionThresholds, default_config
from .models import Decision, RiskAssessment, RiskFactor

SCORE_MIN = 0
SCORE_MAX = 100

FAIL_SAFE_SCORE = 50
FAIL_SAFE_CONFIDENCE = 0.1


def clamp_score(total: int) -> int:
    return max(SCORE_MIN, min(total, SCORE_MAX))


def classify_decision(score: int, thresholds: DecisionThresholds | None = None) -> Decision:
    t = thresholds or default_config.thresholds
    if score <= t.allow_max:
        return Decision.ALLOW
    if score <= t.warn_max:
        return Decision.WARN
    return Decision.DENY


def compute_confidence(factor_count: int, score: int) -> float:
    """Secondary display signal, not a calibrated probability."""
    confidence = 0.3 + 0.1 * factor_count + (0.3 if score > 0 else 0.0)
    return round(min(confidence, 1.0), 2)


def reduce_factors(
    factors: list[RiskFactor],
    thresholds: DecisionThresholds | None = None,
    computed_at: datetime | None = None,
) -> RiskAssessment:
    score = clamp_score(sum(f.impact for f in factors))
    return RiskAssessment(
        score=score,
        decision=classify_decision(score, thresholds),
        confidence=compute_confidence(len(factors), score),
        factors=list(factors),
        computed_at=computed_at or datetime.now(UTC),
    )


def fail_safe_assessment(computed_at: datetime | None = None) -> RiskAssessment:
    """Cautious result used when the pipeline itself fails: warn, never allow."""
    return RiskAssessment(
        score=FAIL_SAFE_SCORE,
        decision=Decision.WARN,
        confidence=FAIL_SAFE_CONFIDENCE,
        factors=[
            RiskFactor(
                name="SYSTEM_ERROR",
                impact=FAIL_SAFE_SCORE,
                description="Risk assessment system encountered an error",
            )
        ],
        computed_at=computed_at or datetime.now(UTC),
    )

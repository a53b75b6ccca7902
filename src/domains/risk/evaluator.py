"""Evaluate the factor catalog against a transaction context.

Pure functions only: no I/O, no clock. The same context and catalog always
produce the same factor list.
"""

import math

from .catalog import FACTOR_CATALOG, FactorDefinition, Scaling, Tier
from .config import DAY_SECONDS, HOUR_SECONDS
from .models import RiskFactor, TransactionContext


def scale_impact(tier: Tier, value: float) -> int:
    """Impact of ``tier`` for ``value``, bounded by ``tier.max_impact``.

    Ratio-based scalings measure overshoot against the tier's lower bound.
    Results are truncated toward zero.
    """
    if tier.scaling is Scaling.FIXED or not tier.lower:
        return tier.max_impact

    ratio = value / tier.lower
    span = tier.scale_span

    if tier.scaling is Scaling.LINEAR:
        raw = tier.max_impact * min(ratio, span) / span
    elif tier.scaling is Scaling.LINEAR_EXCESS:
        raw = tier.max_impact * (ratio - 1)
    elif tier.scaling is Scaling.LOG2:
        raw = tier.max_impact * math.log2(ratio + 1) / math.log2(span + 1)
    else:
        raise ValueError(f"Unknown scaling: {tier.scaling}")

    if tier.max_impact >= 0:
        raw = min(raw, tier.max_impact)
    else:
        raw = max(raw, tier.max_impact)
    return int(raw)


def _describe(tier: Tier, value: float, ctx: TransactionContext) -> str:
    return tier.description.format(
        value=value,
        ctx=ctx,
        hours=value / HOUR_SECONDS,
        days=value / DAY_SECONDS,
        role=ctx.account_role or "unknown",
    )


def evaluate_definition(definition: FactorDefinition, ctx: TransactionContext) -> RiskFactor | None:
    """Return the first matching tier of ``definition`` as a RiskFactor, if any."""
    if definition.guard is not None and not definition.guard(ctx):
        return None

    value = definition.signal(ctx)
    if value is None:
        return None

    for tier in definition.tiers:
        if tier.contains(value):
            return RiskFactor(
                name=tier.name,
                impact=scale_impact(tier, value),
                description=_describe(tier, value, ctx),
            )
    return None


def evaluate_factors(
    ctx: TransactionContext,
    catalog: tuple[FactorDefinition, ...] = FACTOR_CATALOG,
) -> list[RiskFactor]:
    """Evaluate every definition in catalog order; silent definitions are skipped."""
    factors: list[RiskFactor] = []
    seen: set[str] = set()
    for definition in catalog:
        factor = evaluate_definition(definition, ctx)
        if factor is None or factor.name in seen:
            continue
        seen.add(factor.name)
        factors.append(factor)
    return factors

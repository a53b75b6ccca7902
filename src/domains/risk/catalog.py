"""Declarative risk factor catalog.

Each ``FactorDefinition`` reads one signal from the ``TransactionContext`` and
carries an ordered tuple of ``Tier`` bands. The evaluator walks the tiers
top-down and the first band containing the signal value fires, so tiers of
one definition are mutually exclusive. Independent severity levels that may
fire together (e.g. UNUSUAL_ITEM_COUNT and EXTREME_ITEM_COUNT) are separate
definitions.

Tuning a threshold or adding a factor is a change to ``build_catalog`` only.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from .config import RiskConfig, default_config
from .models import TransactionContext
from .signals import TRUSTED_ROLES

BOT_USER_AGENT = re.compile(
    r"bot|crawler|spider|scraper|curl|wget|python|postman|scrapy|httpclient",
    re.IGNORECASE,
)


class Scaling(StrEnum):
    FIXED = "fixed"
    LINEAR = "linear"
    LINEAR_EXCESS = "linear_excess"
    LOG2 = "log2"


@dataclass(frozen=True)
class Tier:
    """One band of a factor: ``lower (<|<=) value < upper``.

    ``lower`` doubles as the reference point for ratio-based scaling.
    """

    name: str
    max_impact: int
    description: str
    lower: float | None = None
    upper: float | None = None
    lower_inclusive: bool = True
    scaling: Scaling = Scaling.FIXED
    scale_span: float = 1.0

    def contains(self, value: float) -> bool:
        if self.lower is not None:
            if self.lower_inclusive and value < self.lower:
                return False
            if not self.lower_inclusive and value <= self.lower:
                return False
        if self.upper is not None and value >= self.upper:
            return False
        return True


@dataclass(frozen=True)
class FactorDefinition:
    dimension: str
    signal: Callable[[TransactionContext], float | None]
    tiers: tuple[Tier, ...]
    guard: Callable[[TransactionContext], bool] | None = None


def is_bot_user_agent(user_agent: str | None) -> bool:
    return bool(user_agent) and BOT_USER_AGENT.search(user_agent) is not None


def is_legitimate_single_purchase(ctx: TransactionContext) -> bool:
    """One unique item, quantity one, from a regular browser."""
    return (
        ctx.unique_item_count == 1
        and ctx.total_quantity == 1
        and not is_bot_user_agent(ctx.request_metadata.user_agent)
    )


def _flag(condition: bool) -> float | None:
    return 1.0 if condition else None


def build_catalog(config: RiskConfig | None = None) -> tuple[FactorDefinition, ...]:
    cfg = config or default_config
    qty = cfg.quantity
    sess = cfg.session
    hist = cfg.history

    def history_guard(ctx: TransactionContext) -> bool:
        return (
            ctx.past_transaction_total is not None
            and ctx.past_transaction_total >= hist.min_samples
            and ctx.account_age_seconds is not None
            and ctx.account_age_seconds >= hist.new_account_seconds
        )

    def item_count_guard(ctx: TransactionContext) -> bool:
        return not is_legitimate_single_purchase(ctx)

    return (
        FactorDefinition(
            dimension="amount",
            signal=lambda ctx: ctx.total_amount_cents,
            tiers=(
                Tier(
                    name="HIGH_AMOUNT",
                    max_impact=30,
                    lower=cfg.amount.high_amount_cents,
                    lower_inclusive=False,
                    scaling=Scaling.LINEAR,
                    scale_span=cfg.amount.high_amount_ratio_cap,
                    description="Transaction amount ${ctx.total_amount:.2f} exceeds normal threshold",
                ),
            ),
        ),
        FactorDefinition(
            dimension="item_count",
            signal=lambda ctx: ctx.total_quantity,
            guard=item_count_guard,
            tiers=(
                Tier(
                    name="UNUSUAL_ITEM_COUNT",
                    max_impact=35,
                    lower=qty.unusual_item_count,
                    lower_inclusive=False,
                    scaling=Scaling.LOG2,
                    scale_span=3.0,
                    description="High total quantity ({value:.0f}) may indicate bulk purchasing",
                ),
            ),
        ),
        FactorDefinition(
            dimension="extreme_item_count",
            signal=lambda ctx: ctx.total_quantity,
            guard=item_count_guard,
            tiers=(
                Tier(
                    name="EXTREME_ITEM_COUNT",
                    max_impact=50,
                    lower=qty.extreme_item_count,
                    lower_inclusive=False,
                    scaling=Scaling.LINEAR,
                    scale_span=2.0,
                    description=(
                        "Extremely high quantity ({value:.0f}) indicates potential fraud or reselling"
                    ),
                ),
            ),
        ),
        FactorDefinition(
            dimension="bulk_single_item",
            signal=lambda ctx: ctx.max_line_quantity,
            tiers=(
                Tier(
                    name="BULK_SINGLE_ITEM",
                    max_impact=40,
                    lower=qty.bulk_single_item,
                    lower_inclusive=False,
                    scaling=Scaling.LOG2,
                    scale_span=4.0,
                    description="High quantity ({value:.0f}) of single item suggests bulk purchase",
                ),
            ),
        ),
        FactorDefinition(
            dimension="extreme_bulk_single",
            signal=lambda ctx: ctx.max_line_quantity,
            tiers=(
                Tier(
                    name="EXTREME_BULK_SINGLE",
                    max_impact=45,
                    lower=qty.extreme_bulk_single,
                    lower_inclusive=False,
                    scaling=Scaling.LINEAR,
                    scale_span=2.0,
                    description=(
                        "Extremely high quantity ({value:.0f}) of single item "
                        "indicates potential reselling or fraud"
                    ),
                ),
            ),
        ),
        FactorDefinition(
            dimension="store_count",
            signal=lambda ctx: ctx.unique_store_count,
            tiers=(
                Tier(
                    name="MULTIPLE_STORES",
                    max_impact=25,
                    lower=qty.multiple_stores,
                    lower_inclusive=False,
                    scaling=Scaling.LINEAR_EXCESS,
                    description="Transaction spans {value:.0f} different stores",
                ),
            ),
        ),
        FactorDefinition(
            dimension="user_agent",
            signal=lambda ctx: _flag(is_bot_user_agent(ctx.request_metadata.user_agent)),
            tiers=(
                Tier(
                    name="SUSPICIOUS_USER_AGENT",
                    max_impact=15,
                    description="User agent suggests automated/non-browser access",
                ),
            ),
        ),
        FactorDefinition(
            dimension="payment_method",
            signal=lambda ctx: _flag(ctx.payment_method_is_new),
            tiers=(
                Tier(
                    name="NEW_PAYMENT_METHOD",
                    max_impact=20,
                    description="Using new/unsaved payment method",
                ),
            ),
        ),
        FactorDefinition(
            dimension="session_token_age",
            signal=lambda ctx: ctx.session_token_age_seconds,
            tiers=(
                Tier(
                    name="OLD_SESSION_TOKEN",
                    max_impact=20,
                    lower=sess.old_token_seconds,
                    description="Session token is {hours:.0f} hours old (potential hijack risk)",
                ),
                Tier(
                    name="AGED_SESSION_TOKEN",
                    max_impact=10,
                    lower=sess.aged_token_seconds,
                    upper=sess.old_token_seconds,
                    description="Session token is {hours:.0f} hours old",
                ),
            ),
        ),
        FactorDefinition(
            dimension="concurrent_sessions",
            signal=lambda ctx: ctx.concurrent_session_count,
            tiers=(
                Tier(
                    name="CONCURRENT_SESSIONS",
                    max_impact=25,
                    lower=sess.concurrent_sessions,
                    description="User has {value:.0f} active sessions (possible account compromise)",
                ),
                Tier(
                    name="MODERATE_CONCURRENT_SESSIONS",
                    max_impact=10,
                    lower=sess.moderate_concurrent_sessions,
                    upper=sess.concurrent_sessions,
                    description="User has {value:.0f} active sessions",
                ),
            ),
        ),
        FactorDefinition(
            dimension="failed_logins",
            signal=lambda ctx: ctx.failed_login_attempts_24h,
            tiers=(
                Tier(
                    name="FAILED_LOGIN_ATTEMPTS",
                    max_impact=30,
                    lower=6,
                    description=(
                        "{value:.0f} failed login attempts in last 24 hours "
                        "(credential stuffing risk)"
                    ),
                ),
                Tier(
                    name="SOME_FAILED_LOGINS",
                    max_impact=15,
                    lower=3,
                    upper=6,
                    description="{value:.0f} failed login attempts in last 24 hours",
                ),
                Tier(
                    name="FEW_FAILED_LOGINS",
                    max_impact=5,
                    lower=1,
                    upper=3,
                    description="{value:.0f} failed login attempt(s) in last 24 hours",
                ),
            ),
        ),
        FactorDefinition(
            dimension="account_age",
            signal=lambda ctx: ctx.account_age_seconds,
            tiers=(
                Tier(
                    name="NEW_ACCOUNT",
                    max_impact=10,
                    upper=hist.new_account_seconds,
                    description="Account is only {days:.0f} day(s) old",
                ),
            ),
        ),
        FactorDefinition(
            dimension="account_role",
            signal=lambda ctx: _flag((ctx.account_role or "").lower() in TRUSTED_ROLES),
            tiers=(
                Tier(
                    name="TRUSTED_ROLE",
                    max_impact=-10,
                    description="Account has trusted role: {role}",
                ),
            ),
        ),
        FactorDefinition(
            dimension="transaction_history",
            signal=lambda ctx: ctx.past_transaction_success_rate_pct,
            guard=history_guard,
            tiers=(
                Tier(
                    name="GOOD_TRANSACTION_HISTORY",
                    max_impact=-15,
                    lower=hist.good_rate_pct,
                    description=(
                        "Good transaction history: {value:.1f}% success rate over "
                        "{ctx.past_transaction_total} transactions"
                    ),
                ),
                Tier(
                    name="MODERATE_TRANSACTION_HISTORY",
                    max_impact=10,
                    lower=hist.poor_rate_pct,
                    upper=hist.moderate_rate_pct,
                    description=(
                        "Moderate transaction history: {value:.1f}% success rate over "
                        "{ctx.past_transaction_total} transactions"
                    ),
                ),
                Tier(
                    name="POOR_TRANSACTION_HISTORY",
                    max_impact=25,
                    upper=hist.poor_rate_pct,
                    description=(
                        "Poor transaction history: only {value:.1f}% success rate over "
                        "{ctx.past_transaction_total} transactions"
                    ),
                ),
            ),
        ),
        FactorDefinition(
            dimension="recent_failures",
            signal=lambda ctx: ctx.recent_failures_1h,
            tiers=(
                Tier(
                    name="RECENT_TRANSACTION_FAILURES",
                    max_impact=40,
                    lower=5,
                    description=(
                        "{value:.0f} failed transactions in last hour (card testing suspected)"
                    ),
                ),
                Tier(
                    name="MULTIPLE_TRANSACTION_FAILURES",
                    max_impact=25,
                    lower=3,
                    upper=5,
                    description="{value:.0f} failed transactions in last hour",
                ),
                Tier(
                    name="SINGLE_TRANSACTION_FAILURE",
                    max_impact=10,
                    lower=1,
                    upper=3,
                    description="{value:.0f} failed transaction(s) in last hour",
                ),
            ),
        ),
        FactorDefinition(
            dimension="session_payment_methods",
            signal=lambda ctx: ctx.distinct_payment_methods_this_session,
            tiers=(
                Tier(
                    name="MULTIPLE_PAYMENT_METHODS",
                    max_impact=25,
                    lower=3,
                    description=(
                        "Tried {value:.0f} different payment methods in this session "
                        "(card testing suspected)"
                    ),
                ),
                Tier(
                    name="TWO_PAYMENT_METHODS",
                    max_impact=10,
                    lower=2,
                    upper=3,
                    description="Tried {value:.0f} different payment methods in this session",
                ),
            ),
        ),
    )


FACTOR_CATALOG = build_catalog()


def describe_catalog(catalog: tuple[FactorDefinition, ...] = FACTOR_CATALOG) -> list[dict]:
    """Serialisable view of the catalog for introspection endpoints."""
    return [
        {
            "dimension": definition.dimension,
            "guarded": definition.guard is not None,
            "tiers": [
                {
                    "name": tier.name,
                    "lower": tier.lower,
                    "upper": tier.upper,
                    "lower_inclusive": tier.lower_inclusive,
                    "max_impact": tier.max_impact,
                    "scaling": tier.scaling.value,
                }
                for tier in definition.tiers
            ],
        }
        for definition in catalog
    ]


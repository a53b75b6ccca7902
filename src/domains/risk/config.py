"""Risk engine configuration with sensible defaults."""

import os
from dataclasses import dataclass, field

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS


@dataclass
class DecisionThresholds:
    allow_max: int = 20
    warn_max: int = 50


@dataclass
class AmountThresholds:
    high_amount_cents: int = 30_000
    high_amount_ratio_cap: float = 3.0


@dataclass
class QuantityThresholds:
    unusual_item_count: int = 4
    extreme_item_count: int = 16
    bulk_single_item: int = 7
    extreme_bulk_single: int = 20
    multiple_stores: int = 2


@dataclass
class SessionThresholds:
    old_token_seconds: int = 48 * HOUR_SECONDS
    aged_token_seconds: int = 24 * HOUR_SECONDS
    concurrent_sessions: int = 4
    moderate_concurrent_sessions: int = 3


@dataclass
class HistoryThresholds:
    min_samples: int = 5
    new_account_seconds: int = 7 * DAY_SECONDS
    good_rate_pct: float = 90.0
    moderate_rate_pct: float = 70.0
    poor_rate_pct: float = 50.0


@dataclass
class RiskConfig:
    thresholds: DecisionThresholds = field(default_factory=DecisionThresholds)
    amount: AmountThresholds = field(default_factory=AmountThresholds)
    quantity: QuantityThresholds = field(default_factory=QuantityThresholds)
    session: SessionThresholds = field(default_factory=SessionThresholds)
    history: HistoryThresholds = field(default_factory=HistoryThresholds)

    @classmethod
    def from_env(cls) -> "RiskConfig":
        """Load config with env var overrides. Env vars use RISK_ prefix."""
        config = cls()

        # Decision overrides
        if v := os.getenv("RISK_ALLOW_MAX"):
            config.thresholds.allow_max = int(v)
        if v := os.getenv("RISK_WARN_MAX"):
            config.thresholds.warn_max = int(v)

        # Amount overrides
        if v := os.getenv("RISK_HIGH_AMOUNT_CENTS"):
            config.amount.high_amount_cents = int(v)

        # Quantity overrides
        if v := os.getenv("RISK_UNUSUAL_ITEM_COUNT"):
            config.quantity.unusual_item_count = int(v)
        if v := os.getenv("RISK_EXTREME_ITEM_COUNT"):
            config.quantity.extreme_item_count = int(v)
        if v := os.getenv("RISK_BULK_SINGLE_ITEM"):
            config.quantity.bulk_single_item = int(v)
        if v := os.getenv("RISK_EXTREME_BULK_SINGLE"):
            config.quantity.extreme_bulk_single = int(v)
        if v := os.getenv("RISK_MULTIPLE_STORES"):
            config.quantity.multiple_stores = int(v)

        # History overrides
        if v := os.getenv("RISK_HISTORY_MIN_SAMPLES"):
            config.history.min_samples = int(v)
        if v := os.getenv("RISK_NEW_ACCOUNT_SECONDS"):
            config.history.new_account_seconds = int(v)

        return config


# Module-level default instance
default_config = RiskConfig()

"""Account and behavioral signal collection for a known user."""

from collections.abc import Awaitable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeVar

import structlog

from .config import RiskConfig, default_config
from .gateway import SignalRepository

logger = structlog.get_logger()

T = TypeVar("T")

TRUSTED_ROLES = frozenset({"vendor", "admin"})


@dataclass
class AccountSignals:
    session_token_age_seconds: int | None = None
    concurrent_session_count: int | None = None
    failed_login_attempts_24h: int | None = None
    account_age_seconds: int | None = None
    account_role: str | None = None
    past_transaction_total: int | None = None
    past_transaction_successful: int | None = None
    past_transaction_success_rate_pct: float | None = None
    recent_failures_1h: int | None = None
    distinct_payment_methods_this_session: int | None = None

    def as_context_fields(self) -> dict:
        return asdict(self)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class AccountSignalCollector:
    """Derives behavioral signals from the gateway.

    Each signal is fetched in isolation: a failing read leaves only that
    signal unknown (None) and is logged.
    """

    def __init__(
        self,
        repository: SignalRepository,
        config: RiskConfig | None = None,
        success_status: str = "Completed",
        failed_status: str = "Failed",
    ) -> None:
        self._repository = repository
        self._config = config or default_config
        self._success_status = success_status
        self._failed_status = failed_status

    async def _safe(self, signal: str, user_id: str, call: Awaitable[T]) -> T | None:
        try:
            return await call
        except Exception:
            logger.warning("signal_collection_failed", signal=signal, user_id=user_id, exc_info=True)
            return None

    async def collect(
        self,
        user_id: str | None,
        now: datetime | None = None,
        session_issued_at: datetime | None = None,
        payment_method_id: str | None = None,
    ) -> AccountSignals:
        now = now or datetime.now(UTC)
        signals = AccountSignals()

        if session_issued_at is not None:
            age = (now - _as_utc(session_issued_at)).total_seconds()
            signals.session_token_age_seconds = max(int(age), 0)

        if not user_id:
            return signals

        account = await self._safe("account", user_id, self._repository.get_account(user_id))
        if account is not None:
            age = (now - _as_utc(account.created_at)).total_seconds()
            signals.account_age_seconds = max(int(age), 0)

        if account is not None and (account.user_type or "").lower() == "admin":
            signals.account_role = "admin"
        else:
            owns_store = await self._safe(
                "store_ownership", user_id, self._repository.owns_store(user_id)
            )
            if owns_store is not None:
                signals.account_role = "vendor" if owns_store else "customer"

        stats = await self._safe(
            "order_stats",
            user_id,
            self._repository.get_order_stats(user_id, self._success_status),
        )
        if stats is not None:
            signals.past_transaction_total = stats.total
            signals.past_transaction_successful = stats.successful
            if stats.total >= self._config.history.min_samples:
                signals.past_transaction_success_rate_pct = stats.successful / stats.total * 100

        signals.recent_failures_1h = await self._safe(
            "recent_failures",
            user_id,
            self._repository.count_orders_with_status(
                user_id, self._failed_status, now - timedelta(hours=1)
            ),
        )

        signals.concurrent_session_count = await self._safe(
            "concurrent_sessions", user_id, self._repository.count_active_sessions(user_id, now)
        )

        signals.failed_login_attempts_24h = await self._safe(
            "failed_logins",
            user_id,
            self._repository.count_failed_logins(user_id, now - timedelta(hours=24)),
        )

        window_start = _as_utc(session_issued_at) if session_issued_at else now - timedelta(hours=1)
        methods = await self._safe(
            "payment_methods",
            user_id,
            self._repository.get_payment_methods_since(user_id, window_start),
        )
        if methods is not None:
            tried = set(methods)
            if payment_method_id:
                tried.add(payment_method_id)
            signals.distinct_payment_methods_this_session = len(tried)

        return signals

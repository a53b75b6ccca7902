"""Zero-trust risk engine: orchestrates one payment risk check.

Pipeline: enrich line items, collect account signals, build the immutable
``TransactionContext``, evaluate the factor catalog, reduce to a decision and
persist. Scoring itself never fails the checkout: any unexpected error after
input validation yields the cautious fail-safe assessment.
"""

from collections.abc import Callable, Mapping
from datetime import UTC, datetime

import structlog

from .catalog import FACTOR_CATALOG, FactorDefinition
from .config import RiskConfig, default_config
from .enricher import ContextEnricher, ItemsSource
from .evaluator import evaluate_factors
from .gateway import SignalRepository
from .models import (
    PaymentRiskRequest,
    RequestMetadata,
    RiskCheckResult,
    ShippingInfo,
    TransactionContext,
    build_store_distribution,
    to_cents,
)
from .reducer import fail_safe_assessment, reduce_factors
from .signals import AccountSignalCollector
from .sink import AssessmentSink

logger = structlog.get_logger()


class InvalidAmountError(ValueError):
    """The payment amount is missing, non-numeric, non-finite or not positive."""

    def __init__(self, amount) -> None:
        super().__init__("Invalid payment amount")
        self.amount = amount


def client_ip(headers: Mapping[str, str]) -> str | None:
    """First hop of ``x-forwarded-for``, else ``x-real-ip``."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or None


def build_request_metadata(headers: Mapping[str, str], now: datetime) -> RequestMetadata:
    return RequestMetadata(
        user_agent=headers.get("user-agent") or None,
        ip_address=client_ip(headers),
        timestamp_utc=now,
    )


class RiskEngine:
    def __init__(
        self,
        repository: SignalRepository,
        sink: AssessmentSink | None = None,
        config: RiskConfig | None = None,
        catalog: tuple[FactorDefinition, ...] = FACTOR_CATALOG,
        success_status: str = "Completed",
        failed_status: str = "Failed",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or default_config
        self._catalog = catalog
        self._sink = sink
        self._enricher = ContextEnricher(repository)
        self._collector = AccountSignalCollector(
            repository, self._config, success_status=success_status, failed_status=failed_status
        )
        self._clock = clock or (lambda: datetime.now(UTC))

    async def build_context(
        self,
        request: PaymentRiskRequest,
        amount_cents: int,
        headers: Mapping[str, str],
        now: datetime,
    ) -> tuple[TransactionContext, str]:
        user = request.user
        user_id = user.id if user and user.id else None

        enriched = await self._enricher.resolve(request, user_id)
        signals = await self._collector.collect(
            user_id,
            now=now,
            session_issued_at=request.auth.session.issued_at
            if request.auth and request.auth.session
            else None,
            payment_method_id=request.payment_method_id,
        )

        shipping = request.shipping_data
        context = TransactionContext(
            user_id=user_id,
            user_email=user.email if user else None,
            user_role=user.user_type if user else None,
            total_amount_cents=amount_cents,
            currency=request.currency or "aud",
            line_items=enriched.line_items,
            store_distribution=build_store_distribution(enriched.line_items),
            order_id=request.order_id,
            payment_method_id=request.payment_method_id,
            payment_intent_id=request.payment_intent_id,
            payment_method_is_new=bool(request.payment_method_id)
            and not request.save_payment_method,
            request_metadata=build_request_metadata(headers, now),
            shipping=ShippingInfo(
                country=shipping.country, state=shipping.state, city=shipping.city
            )
            if shipping
            else ShippingInfo(),
            **signals.as_context_fields(),
        )
        return context, enriched.source

    async def check(
        self, request: PaymentRiskRequest, headers: Mapping[str, str] | None = None
    ) -> RiskCheckResult:
        amount = request.parsed_amount()
        if amount is None:
            logger.warning("risk_check_invalid_amount", amount=repr(request.amount))
            raise InvalidAmountError(request.amount)

        headers = headers or {}
        now = self._clock()

        try:
            context, source = await self.build_context(request, to_cents(amount), headers, now)
            factors = evaluate_factors(context, self._catalog)
            assessment = reduce_factors(factors, self._config.thresholds, computed_at=now)
        except Exception:
            logger.exception("risk_assessment_failed", order_id=request.order_id)
            return RiskCheckResult(
                assessment=fail_safe_assessment(now),
                items_source=ItemsSource.NONE,
                fail_safe=True,
            )

        assessment_id = None
        if self._sink is not None:
            assessment_id = await self._sink.persist(assessment, context)

        logger.info(
            "risk_assessment_completed",
            assessment_id=assessment_id,
            user_id=context.user_id,
            score=assessment.score,
            decision=assessment.decision.value,
            factor_count=len(assessment.factors),
            items_source=source,
        )
        return RiskCheckResult(
            assessment=assessment,
            assessment_id=assessment_id,
            context=context,
            items_source=source,
        )

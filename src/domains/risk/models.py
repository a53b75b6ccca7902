"""Pydantic models for the risk domain."""

import math
from collections.abc import Callable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Annotated, Any

import structlog
from pydantic import (
    BaseModel,
    BeforeValidator,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    WrapValidator,
)
from pydantic.alias_generators import to_camel

logger = structlog.get_logger()

UNKNOWN_STORE_ID = "unknown"
UNKNOWN_STORE_NAME = "Unknown Store"
UNKNOWN_PRODUCT_NAME = "Unknown Product"


def to_cents(amount: Any) -> int:
    """Convert a major-unit amount (dollars) to integer cents, rounding half up."""
    try:
        value = Decimal(str(amount)) * 100
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {amount!r}") from exc
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class Decision(StrEnum):
    ALLOW = "allow"
    WARN = "warn"
    DENY = "deny"


# ---------------------------------------------------------------------------
# Transaction context (built once per request, immutable)
# ---------------------------------------------------------------------------


class LineItem(BaseModel):
    product_id: str
    name: str = UNKNOWN_PRODUCT_NAME
    unit_price_cents: int = 0
    quantity: int = 1
    store_id: str = UNKNOWN_STORE_ID
    store_name: str = UNKNOWN_STORE_NAME

    model_config = {"frozen": True}

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class StoreBreakdown(BaseModel):
    store_id: str
    store_name: str
    item_count: int
    subtotal_cents: int

    model_config = {"frozen": True}


class RequestMetadata(BaseModel):
    user_agent: str | None = None
    ip_address: str | None = None
    timestamp_utc: datetime

    model_config = {"frozen": True}


class ShippingInfo(BaseModel):
    country: str | None = None
    state: str | None = None
    city: str | None = None

    model_config = {"frozen": True}


def build_store_distribution(items: tuple[LineItem, ...] | list[LineItem]) -> dict[str, StoreBreakdown]:
    """Aggregate line items per store, preserving first-seen store order."""
    totals: dict[str, dict] = {}
    for item in items:
        entry = totals.setdefault(
            item.store_id,
            {"store_name": item.store_name, "item_count": 0, "subtotal_cents": 0},
        )
        entry["item_count"] += item.quantity
        entry["subtotal_cents"] += item.subtotal_cents
    return {
        store_id: StoreBreakdown(store_id=store_id, **entry) for store_id, entry in totals.items()
    }


class TransactionContext(BaseModel):
    user_id: str | None = None
    user_email: str | None = None
    user_role: str | None = None

    total_amount_cents: int
    currency: str = "aud"
    line_items: tuple[LineItem, ...] = ()
    store_distribution: dict[str, StoreBreakdown] = Field(default_factory=dict)

    order_id: int | None = None
    payment_method_id: str | None = None
    payment_intent_id: str | None = None
    payment_method_is_new: bool = False

    request_metadata: RequestMetadata
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)

    # Behavioral signals: None means unknown, never zero
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

    model_config = {"frozen": True}

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.line_items)

    @property
    def unique_item_count(self) -> int:
        return len(self.line_items)

    @property
    def unique_store_count(self) -> int:
        return len(self.store_distribution)

    @property
    def max_line_quantity(self) -> int:
        return max((item.quantity for item in self.line_items), default=0)

    @property
    def total_amount(self) -> float:
        return self.total_amount_cents / 100


# ---------------------------------------------------------------------------
# Assessment output
# ---------------------------------------------------------------------------


class RiskFactor(BaseModel):
    name: str
    impact: int
    description: str

    model_config = {"frozen": True}

    def to_wire(self) -> dict:
        return {"factor": self.name, "impact": self.impact, "description": self.description}


class RiskAssessment(BaseModel):
    score: int = Field(ge=0, le=100)
    decision: Decision
    confidence: float = Field(ge=0.0, le=1.0)
    factors: list[RiskFactor] = []
    computed_at: datetime

    def to_wire(self, assessment_id: int | None = None) -> dict:
        return {
            "id": assessment_id,
            "decision": self.decision.value,
            "score": self.score,
            "confidence": self.confidence,
            "factors": [f.to_wire() for f in self.factors],
            "timestamp": self.computed_at.isoformat(),
        }


class RiskCheckResult(BaseModel):
    """Outcome of one risk check: the decision plus what it was computed from."""

    assessment: RiskAssessment
    assessment_id: int | None = None
    context: TransactionContext | None = None
    items_source: str = "none"
    fail_safe: bool = False


# ---------------------------------------------------------------------------
# Inbound payment risk-check request
# ---------------------------------------------------------------------------


def _lenient(default: Any = None, factory: Callable[[], Any] | None = None) -> WrapValidator:
    """Replace a malformed value with a default instead of rejecting the request.

    Only the amount may fail a risk check; every other field degrades.
    """

    def validate(value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        try:
            result = handler(value)
        except ValidationError as exc:
            logger.warning(
                "risk_request_field_ignored",
                field=info.field_name,
                value=repr(value)[:80],
                error_count=exc.error_count(),
            )
            return factory() if factory is not None else default
        if isinstance(result, float) and not math.isfinite(result):
            logger.warning("risk_request_field_ignored", field=info.field_name, value=repr(value))
            return default
        return result

    return WrapValidator(validate)


def _stringify_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


OptStr = Annotated[str | None, _lenient()]
OptInt = Annotated[int | None, _lenient()]
OptFloat = Annotated[float | None, _lenient()]
OptId = Annotated[str | int | None, _lenient()]
UserId = Annotated[str | None, BeforeValidator(_stringify_id), _lenient()]


class _CamelModel(BaseModel):
    model_config = {"populate_by_name": True, "alias_generator": to_camel}


class PaymentItem(_CamelModel):
    id: OptId = None
    product_id: OptId = None
    name: OptStr = None
    price: OptFloat = None
    quantity: OptInt = None
    store_id: OptId = None
    store_name: OptStr = None


class CheckoutSessionItem(_CamelModel):
    product_id: OptId = None
    price: OptFloat = None
    quantity: OptInt = None


class CheckoutSession(_CamelModel):
    items: Annotated[
        list[Annotated[CheckoutSessionItem, _lenient(factory=CheckoutSessionItem)]],
        _lenient(factory=list),
    ] = []


class AuthUser(_CamelModel):
    id: UserId = None
    email: OptStr = None
    user_type: OptStr = None


class AuthSession(_CamelModel):
    issued_at: Annotated[datetime | None, _lenient()] = None


class AuthInfo(_CamelModel):
    user: Annotated[AuthUser | None, _lenient()] = None
    session: Annotated[AuthSession | None, _lenient()] = None


class ShippingData(_CamelModel):
    country: OptStr = None
    state: OptStr = None
    city: OptStr = None


class PaymentRiskRequest(_CamelModel):
    """Inbound risk-check body.

    ``amount`` is kept raw and validated by the engine; malformed values in any
    other field fall back to their defaults so the request is still scored.
    """

    amount: Any = None
    currency: Annotated[str, _lenient(default="aud")] = "aud"
    items: Annotated[
        list[Annotated[PaymentItem, _lenient(factory=PaymentItem)]],
        _lenient(factory=list),
    ] = []
    checkout_session: Annotated[CheckoutSession | None, _lenient()] = None
    order_id: OptInt = None
    payment_method_id: OptStr = None
    payment_intent_id: OptStr = None
    save_payment_method: Annotated[bool, _lenient(default=False)] = False
    auth: Annotated[AuthInfo | None, _lenient()] = None
    shipping_data: Annotated[ShippingData | None, _lenient()] = None

    def parsed_amount(self) -> float | None:
        """Return the amount as a positive finite number, or None if invalid."""
        if self.amount is None or isinstance(self.amount, bool):
            return None
        try:
            value = float(self.amount)
        except (TypeError, ValueError):
            return None
        if math.isnan(value) or math.isinf(value) or value <= 0:
            return None
        return value

    @property
    def user(self) -> AuthUser | None:
        return self.auth.user if self.auth else None


class LinkOrdersRequest(_CamelModel):
    risk_assessment_id: OptInt = None
    order_ids: Annotated[list[int], _lenient(factory=list)] = []

"""Unit tests for risk domain models and request parsing."""

import math
from datetime import UTC, datetime

import pytest

from src.domains.risk.models import (
    Decision,
    PaymentRiskRequest,
    RiskAssessment,
    RiskFactor,
    build_store_distribution,
    to_cents,
)
from tests.conftest import line_item, make_context


class TestToCents:
    @pytest.mark.parametrize(
        "amount,cents",
        [(50, 5000), (12.99, 1299), ("123.45", 12345), (0.005, 1), (19.999, 2000), (300, 30000)],
    )
    def test_conversion(self, amount, cents):
        assert to_cents(amount) == cents

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_cents("twelve")


class TestPaymentRiskRequest:
    def test_camel_case_aliases(self):
        request = PaymentRiskRequest.model_validate(
            {
                "amount": 10,
                "paymentMethodId": "pm_1",
                "savePaymentMethod": True,
                "auth": {"user": {"id": "u1", "userType": "vendor"}},
                "shippingData": {"country": "AU"},
            }
        )
        assert request.payment_method_id == "pm_1"
        assert request.save_payment_method is True
        assert request.user.user_type == "vendor"
        assert request.shipping_data.country == "AU"
        assert request.currency == "aud"

    def test_snake_case_accepted(self):
        request = PaymentRiskRequest(amount=10, payment_method_id="pm_2")
        assert request.payment_method_id == "pm_2"

    @pytest.mark.parametrize("amount", [None, 0, -0.01, "x", True, math.nan, -math.inf, [], {}])
    def test_invalid_amounts(self, amount):
        assert PaymentRiskRequest(amount=amount).parsed_amount() is None

    @pytest.mark.parametrize("amount,expected", [(25, 25.0), ("9.50", 9.5), (0.01, 0.01)])
    def test_valid_amounts(self, amount, expected):
        assert PaymentRiskRequest(amount=amount).parsed_amount() == expected

    def test_guest_has_no_user(self):
        assert PaymentRiskRequest(amount=1).user is None


class TestLenientRequestFields:
    def test_malformed_item_fields_fall_back(self):
        request = PaymentRiskRequest.model_validate(
            {
                "amount": 50,
                "items": [
                    {"productId": 1, "quantity": "two", "price": "abc", "storeId": {"x": 1}},
                    {"productId": 2, "quantity": "3", "price": "12.50"},
                ],
            }
        )
        broken, ok = request.items
        assert broken.product_id == 1
        assert broken.quantity is None
        assert broken.price is None
        assert broken.store_id is None
        assert ok.quantity == 3
        assert ok.price == 12.5

    def test_non_object_item_becomes_placeholder(self):
        request = PaymentRiskRequest.model_validate({"amount": 5, "items": ["junk", {"productId": 4}]})
        assert len(request.items) == 2
        assert request.items[0].product_id is None
        assert request.items[1].product_id == 4

    def test_non_list_items_are_dropped(self):
        assert PaymentRiskRequest.model_validate({"amount": 5, "items": "junk"}).items == []

    def test_non_finite_price_is_ignored(self):
        request = PaymentRiskRequest.model_validate({"amount": 5, "items": [{"price": "inf"}]})
        assert request.items[0].price is None

    def test_malformed_scalars_use_defaults(self):
        request = PaymentRiskRequest.model_validate(
            {
                "amount": 5,
                "orderId": "ORD-1",
                "currency": 7,
                "savePaymentMethod": "maybe",
                "paymentMethodId": ["pm"],
                "shippingData": "AU",
                "checkoutSession": {"items": [{"productId": 3, "quantity": "many"}]},
                "auth": {"user": {"id": 42, "userType": 1}, "session": {"issuedAt": "yesterday"}},
            }
        )
        assert request.order_id is None
        assert request.currency == "aud"
        assert request.save_payment_method is False
        assert request.payment_method_id is None
        assert request.shipping_data is None
        assert request.checkout_session.items[0].quantity is None
        assert request.user.id == "42"
        assert request.user.user_type is None
        assert request.auth.session.issued_at is None

    def test_amount_is_left_raw(self):
        request = PaymentRiskRequest.model_validate({"amount": "abc", "items": [{"quantity": "two"}]})
        assert request.amount == "abc"
        assert request.parsed_amount() is None


class TestTransactionContext:
    def test_derived_counts(self):
        ctx = make_context(
            items=[
                line_item("1", quantity=3, store_id="a"),
                line_item("2", quantity=1, store_id="b"),
                line_item("3", quantity=2, store_id="a"),
            ]
        )
        assert ctx.total_quantity == 6
        assert ctx.unique_item_count == 3
        assert ctx.unique_store_count == 2
        assert ctx.max_line_quantity == 3

    def test_empty_context(self):
        ctx = make_context(items=[], amount_cents=1000)
        assert ctx.total_quantity == 0
        assert ctx.max_line_quantity == 0
        assert ctx.unique_store_count == 0
        assert ctx.total_amount == 10.0

    def test_is_immutable(self):
        ctx = make_context()
        with pytest.raises(Exception):
            ctx.total_amount_cents = 1

    def test_store_distribution(self):
        dist = build_store_distribution(
            [line_item("1", quantity=2, price_cents=500, store_id="a"), line_item("2", store_id="a")]
        )
        assert dist["a"].item_count == 3
        assert dist["a"].subtotal_cents == 2000


class TestAssessmentWire:
    def test_to_wire(self):
        ts = datetime(2026, 5, 1, tzinfo=UTC)
        assessment = RiskAssessment(
            score=35,
            decision=Decision.WARN,
            confidence=0.8,
            factors=[RiskFactor(name="NEW_PAYMENT_METHOD", impact=20, description="new")],
            computed_at=ts,
        )
        assert assessment.to_wire(7) == {
            "id": 7,
            "decision": "warn",
            "score": 35,
            "confidence": 0.8,
            "factors": [{"factor": "NEW_PAYMENT_METHOD", "impact": 20, "description": "new"}],
            "timestamp": ts.isoformat(),
        }

    def test_score_bounds_enforced(self):
        with pytest.raises(ValueError):
            RiskAssessment(score=101, decision=Decision.DENY, confidence=1.0, computed_at=datetime.now(UTC))

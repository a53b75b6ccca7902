"""Tests for line item resolution across checkout, request, order and cart sources."""

import pytest

from src.domains.risk.enricher import ContextEnricher, ItemsSource
from src.domains.risk.gateway import ProductRecord
from src.domains.risk.models import UNKNOWN_STORE_ID, PaymentRiskRequest
from tests.conftest import line_item


def _request(**kwargs) -> PaymentRiskRequest:
    return PaymentRiskRequest.model_validate({"amount": 40, **kwargs})


@pytest.fixture
def enricher(repository):
    repository.products = {
        "11": ProductRecord("11", "Lamp", 2500, "7", "Bright Homes"),
        "12": ProductRecord("12", "Rug", 9900, "8", "Floor Co"),
    }
    return ContextEnricher(repository)


class TestCheckoutSessionItems:
    @pytest.mark.asyncio
    async def test_joins_catalog(self, enricher):
        request = _request(
            checkoutSession={"items": [{"productId": 11, "price": 1.0, "quantity": 2}, {"productId": "12"}]}
        )
        result = await enricher.resolve(request, None)

        assert result.source == ItemsSource.CHECKOUT_SESSION
        lamp, rug = result.line_items
        # Catalog price wins over the client-supplied price
        assert lamp.unit_price_cents == 2500
        assert lamp.quantity == 2
        assert lamp.store_id == "7"
        assert lamp.store_name == "Bright Homes"
        assert rug.quantity == 1

    @pytest.mark.asyncio
    async def test_unknown_product_becomes_placeholder(self, enricher):
        request = _request(checkoutSession={"items": [{"productId": 999, "price": 12.5, "quantity": 3}]})
        result = await enricher.resolve(request, None)

        (item,) = result.line_items
        assert item.store_id == UNKNOWN_STORE_ID
        assert item.unit_price_cents == 1250
        assert item.quantity == 3

    @pytest.mark.asyncio
    async def test_non_numeric_product_id_becomes_placeholder(self, enricher):
        request = _request(checkoutSession={"items": [{"productId": "abc", "price": 5}]})
        (item,) = (await enricher.resolve(request, None)).line_items
        assert item.product_id == "abc"
        assert item.store_id == UNKNOWN_STORE_ID

    @pytest.mark.asyncio
    async def test_catalog_failure_falls_back_to_placeholders(self, enricher, repository):
        repository.failures.add("get_products")
        request = _request(checkoutSession={"items": [{"productId": 11, "price": 25, "quantity": 1}]})
        result = await enricher.resolve(request, None)

        assert result.source == ItemsSource.CHECKOUT_SESSION
        (item,) = result.line_items
        assert item.store_id == UNKNOWN_STORE_ID
        assert item.unit_price_cents == 2500

    @pytest.mark.asyncio
    async def test_checkout_session_beats_request_items(self, enricher):
        request = _request(
            checkoutSession={"items": [{"productId": 11}]},
            items=[{"id": "x", "price": 1, "quantity": 9}],
        )
        result = await enricher.resolve(request, None)
        assert result.source == ItemsSource.CHECKOUT_SESSION
        assert result.line_items[0].product_id == "11"


class TestFallbackSources:
    @pytest.mark.asyncio
    async def test_request_items(self, enricher):
        request = _request(
            items=[{"productId": 5, "name": "Mug", "price": 12.99, "quantity": 2, "storeId": 3}]
        )
        result = await enricher.resolve(request, "u1")

        assert result.source == ItemsSource.REQUEST
        (item,) = result.line_items
        assert item.unit_price_cents == 1299
        assert item.store_id == "3"
        assert item.subtotal_cents == 2598

    @pytest.mark.asyncio
    async def test_order_items(self, enricher, repository):
        repository.order_items[42] = [line_item("11", quantity=2)]
        result = await enricher.resolve(_request(orderId=42), "u1")
        assert result.source == ItemsSource.ORDER
        assert result.line_items[0].quantity == 2

    @pytest.mark.asyncio
    async def test_cart_when_order_is_empty(self, enricher, repository):
        repository.cart_items["u1"] = [line_item("12", quantity=3)]
        result = await enricher.resolve(_request(orderId=42), "u1")
        assert result.source == ItemsSource.CART
        assert result.line_items[0].quantity == 3

    @pytest.mark.asyncio
    async def test_order_failure_falls_through_to_cart(self, enricher, repository):
        repository.failures.add("get_order_items")
        repository.cart_items["u1"] = [line_item("12")]
        result = await enricher.resolve(_request(orderId=42), "u1")
        assert result.source == ItemsSource.CART

    @pytest.mark.asyncio
    async def test_guest_without_items(self, enricher):
        result = await enricher.resolve(_request(), None)
        assert result.source == ItemsSource.NONE
        assert result.line_items == ()

    @pytest.mark.asyncio
    async def test_everything_failing_yields_empty(self, enricher, repository):
        repository.failures.update({"get_order_items", "get_cart_items"})
        result = await enricher.resolve(_request(orderId=1), "u1")
        assert result.source == ItemsSource.NONE

"""Resolve the line items of a payment attempt from the richest available source."""

from dataclasses import dataclass

import structlog

from .gateway import SignalRepository
from .models import (
    UNKNOWN_PRODUCT_NAME,
    UNKNOWN_STORE_ID,
    UNKNOWN_STORE_NAME,
    CheckoutSessionItem,
    LineItem,
    PaymentItem,
    PaymentRiskRequest,
    to_cents,
)

logger = structlog.get_logger()


class ItemsSource:
    CHECKOUT_SESSION = "checkout_session"
    REQUEST = "request"
    ORDER = "order"
    CART = "cart"
    NONE = "none"


@dataclass(frozen=True)
class EnrichedItems:
    line_items: tuple[LineItem, ...]
    source: str


def _parse_product_id(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value))
    except ValueError:
        return None


def _placeholder(item: CheckoutSessionItem) -> LineItem:
    return LineItem(
        product_id=str(item.product_id) if item.product_id is not None else "unknown",
        name=UNKNOWN_PRODUCT_NAME,
        unit_price_cents=to_cents(item.price or 0),
        quantity=item.quantity if item.quantity is not None else 1,
        store_id=UNKNOWN_STORE_ID,
        store_name=UNKNOWN_STORE_NAME,
    )


def _from_request_item(item: PaymentItem) -> LineItem:
    product_id = item.product_id if item.product_id is not None else item.id
    return LineItem(
        product_id=str(product_id) if product_id is not None else "unknown",
        name=item.name or UNKNOWN_PRODUCT_NAME,
        unit_price_cents=to_cents(item.price or 0),
        quantity=item.quantity if item.quantity is not None else 1,
        store_id=str(item.store_id) if item.store_id is not None else UNKNOWN_STORE_ID,
        store_name=item.store_name or UNKNOWN_STORE_NAME,
    )


class ContextEnricher:
    """Builds the line item list for a transaction.

    Priority order:
    1. checkout-session items, re-joined against the product catalog
    2. items carried on the request body itself
    3. the persisted line items of ``order_id``
    4. the user's active cart
    5. nothing (scoring continues with an empty item set)

    Every read failure degrades to the next source or to placeholder fields;
    enrichment never raises.
    """

    def __init__(self, repository: SignalRepository) -> None:
        self._repository = repository

    async def resolve(self, request: PaymentRiskRequest, user_id: str | None) -> EnrichedItems:
        session_items = request.checkout_session.items if request.checkout_session else []
        if session_items:
            items = await self._join_checkout_items(session_items)
            return EnrichedItems(line_items=items, source=ItemsSource.CHECKOUT_SESSION)

        if request.items:
            items = tuple(_from_request_item(item) for item in request.items)
            return EnrichedItems(line_items=items, source=ItemsSource.REQUEST)

        if request.order_id is not None:
            items = await self._order_items(request.order_id)
            if items:
                return EnrichedItems(line_items=items, source=ItemsSource.ORDER)

        if user_id:
            items = await self._cart_items(user_id)
            if items:
                return EnrichedItems(line_items=items, source=ItemsSource.CART)

        return EnrichedItems(line_items=(), source=ItemsSource.NONE)

    async def _join_checkout_items(
        self, session_items: list[CheckoutSessionItem]
    ) -> tuple[LineItem, ...]:
        product_ids = [
            pid for pid in (_parse_product_id(i.product_id) for i in session_items) if pid is not None
        ]

        catalog = {}
        if product_ids:
            try:
                catalog = await self._repository.get_products(product_ids)
            except Exception:
                logger.warning(
                    "enrichment_catalog_join_failed",
                    product_count=len(product_ids),
                    exc_info=True,
                )

        items = []
        missing = 0
        for item in session_items:
            pid = _parse_product_id(item.product_id)
            product = catalog.get(str(pid)) if pid is not None else None
            if product is None:
                missing += 1
                items.append(_placeholder(item))
                continue
            items.append(
                LineItem(
                    product_id=product.product_id,
                    name=product.name,
                    unit_price_cents=product.price_cents,
                    quantity=item.quantity if item.quantity is not None else 1,
                    store_id=product.store_id,
                    store_name=product.store_name,
                )
            )

        if missing:
            logger.info("enrichment_placeholder_items", missing=missing, total=len(items))
        return tuple(items)

    async def _order_items(self, order_id: int) -> tuple[LineItem, ...]:
        try:
            return tuple(await self._repository.get_order_items(order_id))
        except Exception:
            logger.warning("enrichment_order_items_failed", order_id=order_id, exc_info=True)
            return ()

    async def _cart_items(self, user_id: str) -> tuple[LineItem, ...]:
        try:
            return tuple(await self._repository.get_cart_items(user_id))
        except Exception:
            logger.warning("enrichment_cart_items_failed", user_id=user_id, exc_info=True)
            return ()

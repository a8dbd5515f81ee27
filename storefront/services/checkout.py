from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Any, Tuple

from storefront.constants import DEFAULT_DELIVERY, DELIVERY_OPTIONS, ORDER_STATUS_ON_DELIVERY
from storefront.errors import NotAuthenticated
from storefront.models import Order, OrderItem, utcnow
from storefront.services.pricing import compute_summary

logger = logging.getLogger(__name__)


def _order_number(created_at) -> str:
    return f"ORD-{created_at:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def build_order(user_id: str, cart_items, delivery_key: str = DEFAULT_DELIVERY) -> Order:
    title, fee = DELIVERY_OPTIONS[delivery_key]
    # the checkout screen always charges the chosen delivery fee
    summary = compute_summary(cart_items, fee, apply_free_shipping_threshold=False)

    items = tuple(
        OrderItem(
            product_id=it.product_id,
            product_name=it.product.title,
            unit_price=it.product.display_price,
            quantity=it.quantity,
            product_image_url=it.product.image_url,
            selected_variants=it.selected_variants,
        )
        for it in cart_items
        if it.product is not None
    )

    created_at = utcnow()
    return Order(
        order_number=_order_number(created_at),
        user_id=user_id,
        status=ORDER_STATUS_ON_DELIVERY,
        delivery_method=title,
        subtotal=summary.subtotal,
        shipping_fee=summary.shipping_fee,
        tax=summary.tax,
        total=summary.total,
        total_items=summary.total_item_count,
        items=items,
        created_at=created_at,
    )


async def place_order(session, delivery_key: str = DEFAULT_DELIVERY) -> Tuple[bool, Any]:
    """
    Does:
    - price the current cart with the chosen delivery option
    - write the order to the user's orders collection
    - clear the cart (best effort, the order stands either way)
    Returns (True, Order) or (False, message).
    """
    if session.user_id is None:
        return False, NotAuthenticated().message

    key = (delivery_key or DEFAULT_DELIVERY).upper()
    if key not in DELIVERY_OPTIONS:
        return False, f"Unknown delivery option: {delivery_key}"

    cart_items = session.cart.items
    if not any(it.product is not None for it in cart_items):
        return False, "Cart is empty"

    order = build_order(session.user_id, cart_items, key)
    try:
        order_id = await session.orders().add(order.to_document())
    except Exception as e:
        logger.warning("order for %s failed: %s", session.user_id, e)
        return False, str(e)

    order = replace(order, id=order_id)
    logger.info("order %s placed for %s, total %.2f", order.order_number, session.user_id, order.total)

    if not await session.cart.clear():
        logger.warning("order %s placed but the cart was not fully cleared", order.order_number)

    return True, order

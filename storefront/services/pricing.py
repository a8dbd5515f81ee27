"""Cart pricing: subtotal, shipping, tax and free-shipping progress.

Pure functions over a list of cart items. Constants default to the values
in ``settings`` and can be overridden per call.
"""

from typing import Iterable, NamedTuple, Optional

from storefront.config import settings
from storefront.models import CartItem


class PricingSummary(NamedTuple):
    """Result of cart pricing."""

    subtotal: float
    shipping_fee: float
    tax: float
    total: float
    total_item_count: int


class FreeShippingProgress(NamedTuple):
    remaining: float
    progress: float


def round_money(v: float) -> float:
    return round(v, settings.decimals)


def line_price(item: CartItem) -> float:
    """Unit price times quantity; zero when the product did not resolve."""
    if item.product is None:
        return 0.0
    return item.product.display_price * item.quantity


def compute_subtotal(items: Iterable[CartItem]) -> float:
    return round_money(sum(line_price(it) for it in items))


def compute_summary(
    items: Iterable[CartItem],
    delivery_fee: float,
    apply_free_shipping_threshold: bool,
    *,
    tax_rate: Optional[float] = None,
    free_shipping_threshold: Optional[float] = None,
) -> PricingSummary:
    """Price a cart.

    Args:
        items: cart line items; items without a product snapshot count
            towards the item count but add nothing to the money values
        delivery_fee: fee charged when shipping is not free
        apply_free_shipping_threshold: waive shipping once the subtotal
            reaches the threshold
        tax_rate: overrides ``settings.tax_rate``
        free_shipping_threshold: overrides ``settings.free_shipping_threshold``

    Returns:
        PricingSummary, money values rounded to ``settings.decimals``
    """
    items = list(items)
    rate = settings.tax_rate if tax_rate is None else tax_rate
    threshold = settings.free_shipping_threshold if free_shipping_threshold is None else free_shipping_threshold

    subtotal = compute_subtotal(items)
    total_item_count = sum(it.quantity for it in items)

    if apply_free_shipping_threshold and subtotal >= threshold:
        shipping_fee = 0.0
    else:
        shipping_fee = round_money(delivery_fee)

    # tax is charged on goods only, never on shipping
    tax = round_money(subtotal * rate)
    total = round_money(subtotal + shipping_fee + tax)

    return PricingSummary(
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        tax=tax,
        total=total,
        total_item_count=total_item_count,
    )


def compute_free_shipping_progress(
    subtotal: float,
    free_shipping_threshold: Optional[float] = None,
) -> FreeShippingProgress:
    threshold = settings.free_shipping_threshold if free_shipping_threshold is None else free_shipping_threshold
    if threshold <= 0:
        return FreeShippingProgress(remaining=0.0, progress=1.0)

    remaining = round_money(max(0.0, threshold - subtotal))
    progress = min(1.0, max(0.0, subtotal / threshold))
    return FreeShippingProgress(remaining=remaining, progress=progress)

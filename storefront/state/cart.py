from __future__ import annotations

from dataclasses import replace
from typing import Dict, FrozenSet, Hashable, List, Optional, Tuple

from storefront.config import settings
from storefront.errors import ItemNotFound, RemoteWriteFailed, StockExceeded
from storefront.models import CartItem, Product, newest_first_key, utcnow
from storefront.services.pricing import (
    FreeShippingProgress,
    PricingSummary,
    compute_free_shipping_progress,
    compute_subtotal,
    compute_summary,
)
from storefront.state.store import PendingMutation, ReconcilingStore
from storefront.utils.validators import require_quantity


def _variant_key(variants: Optional[Dict[str, str]]) -> Optional[FrozenSet[Tuple[str, str]]]:
    return frozenset(variants.items()) if variants else None


class CartStore(ReconcilingStore[CartItem]):
    """The signed-in user's cart.

    One row per (product, variant selection): adding a product that is
    already in the cart with the same variants raises its quantity.
    """

    name = "cart"
    item_type = CartItem

    def _dedup_key(self, item: CartItem) -> Hashable:
        return (item.product_id, _variant_key(item.selected_variants))

    def _check_stock(self, product: Optional[Product], quantity: int) -> None:
        if product is not None and product.stock_quantity is not None and quantity > product.stock_quantity:
            raise StockExceeded(product.stock_quantity)

    def _merge_insert(self, existing: CartItem, incoming: CartItem) -> CartItem:
        quantity = existing.quantity + incoming.quantity
        self._check_stock(incoming.product or existing.product, quantity)
        return replace(existing, quantity=quantity)

    def _check_new(self, item: CartItem) -> None:
        require_quantity(item.quantity)
        self._check_stock(item.product, item.quantity)

    def _revert(self, current: CartItem, mutation: PendingMutation[CartItem]) -> CartItem:
        delta = mutation.after.quantity - mutation.before.quantity
        return replace(current, quantity=current.quantity - delta)

    def _update_fields(self, item: CartItem) -> dict:
        return {"quantity": item.quantity}

    def _prepare(self, items: List[CartItem]) -> List[CartItem]:
        return sorted(items, key=newest_first_key, reverse=True)

    async def add_product(
        self,
        product: Product,
        quantity: int = 1,
        selected_variants: Optional[Dict[str, str]] = None,
    ) -> bool:
        if not product.id:
            return self._fail(ItemNotFound("Product ID not found"))
        require_quantity(quantity)
        item = CartItem(
            product_id=product.id,
            quantity=quantity,
            product=product,
            selected_variants=selected_variants or None,
            added_at=utcnow(),
        )
        return await self.insert(item)

    async def update_quantity(self, item: CartItem, quantity: int) -> bool:
        """Set the quantity of a saved row.

        Unlike insert and remove, the list is not touched before the backend
        acknowledges: the new quantity arrives with the next snapshot, or is
        applied right after the write when no subscription is live.
        """
        require_quantity(quantity)
        if not await self._ready():
            return False
        if item.id is None or self._index_of_id(item.id) is None:
            return self._fail(ItemNotFound())

        generation, port = self._generation, self._port
        async with self._write_lock:
            if generation != self._generation:
                return False
            try:
                await port.update(item.id, {"quantity": quantity})
            except Exception as exc:
                if generation != self._generation:
                    return False
                return self._fail(RemoteWriteFailed(), exc)

        if generation != self._generation:
            return True
        if not self._subscription.is_active:
            idx = self._index_of_id(item.id)
            if idx is not None:
                self._items[idx] = replace(self._items[idx], quantity=quantity)
        self.last_error = None
        self._notify()
        return True

    def summary(
        self,
        delivery_fee: Optional[float] = None,
        apply_free_shipping_threshold: bool = True,
    ) -> PricingSummary:
        fee = settings.standard_delivery_fee if delivery_fee is None else delivery_fee
        return compute_summary(self._items, fee, apply_free_shipping_threshold)

    def free_shipping_progress(self) -> FreeShippingProgress:
        return compute_free_shipping_progress(compute_subtotal(self._items))

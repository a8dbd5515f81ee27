from __future__ import annotations

import logging
from typing import List, Optional

from storefront.errors import ItemNotFound
from storefront.models import Product, WishlistItem, newest_first_key, utcnow
from storefront.state.store import ReconcilingStore

logger = logging.getLogger(__name__)


class WishlistStore(ReconcilingStore[WishlistItem]):
    """The signed-in user's wishlist, newest first.

    Entries are stored under their product id, so adding the same product
    twice writes the same document and the list never holds it twice.
    """

    name = "wishlist"
    item_type = WishlistItem

    def _document_id_for(self, item: WishlistItem) -> Optional[str]:
        return item.product_id

    def _prepare(self, items: List[WishlistItem]) -> List[WishlistItem]:
        seen = set()
        unique = []
        for it in sorted(items, key=newest_first_key, reverse=True):
            if it.product_id in seen:
                continue
            seen.add(it.product_id)
            unique.append(it)
        return unique

    def _find(self, product_id: str) -> Optional[WishlistItem]:
        for it in self._items:
            if it.product_id == product_id:
                return it
        return None

    async def add_product(self, product: Product) -> bool:
        if not product.id:
            return self._fail(ItemNotFound("Product ID not found"))
        return await self.insert(WishlistItem(product_id=product.id, product=product, added_at=utcnow()))

    async def remove_product(self, product_id: str) -> bool:
        if not await self._ready():
            return False
        item = self._find(product_id)
        if item is None:
            return True
        if item.id is None:
            # still being saved; the user can retry once it has an id
            logger.debug("wishlist: %s has no id yet, not removing", product_id)
            return False
        return await self.remove(item)

    async def toggle(self, product: Product) -> bool:
        if not await self._ready():
            return False
        if product.id and self.is_member(product.id):
            return await self.remove_product(product.id)
        return await self.add_product(product)

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from storefront.constants import CART_COLLECTION, ORDERS_COLLECTION, WISHLIST_COLLECTION
from storefront.db.port import PortFactory, RemoteCollectionPort
from storefront.db.sqlite import collection_factory, init_db
from storefront.errors import NotAuthenticated
from storefront.state.cart import CartStore
from storefront.state.wishlist import WishlistStore

logger = logging.getLogger(__name__)


class CommerceSession:
    """Cart and wishlist of whoever is signed in.

    Ports are injected as factories keyed by user id, so every store talks
    only to the collections of its current identity.
    """

    def __init__(self, cart_ports: PortFactory, wishlist_ports: PortFactory, order_ports: PortFactory):
        self.cart = CartStore(cart_ports)
        self.wishlist = WishlistStore(wishlist_ports)
        self._order_ports = order_ports
        self.user_id: Optional[str] = None

    @classmethod
    def from_sqlite(cls, db_path: Optional[str] = None) -> "CommerceSession":
        init_db(db_path)
        return cls(
            cart_ports=collection_factory(CART_COLLECTION, db_path),
            wishlist_ports=collection_factory(WISHLIST_COLLECTION, db_path),
            order_ports=collection_factory(ORDERS_COLLECTION, db_path),
        )

    async def sign_in(self, user_id: str) -> None:
        if self.user_id is not None and self.user_id != user_id:
            logger.info("switching user %s -> %s", self.user_id, user_id)
            self.sign_out()
        self.user_id = user_id
        await asyncio.gather(self.cart.load(user_id), self.wishlist.load(user_id))

    async def refresh(self) -> None:
        if self.user_id is None:
            return
        await asyncio.gather(
            self.cart.load(self.user_id, force_refresh=True),
            self.wishlist.load(self.user_id, force_refresh=True),
        )

    def sign_out(self) -> None:
        self.cart.reset()
        self.wishlist.reset()
        self.user_id = None

    def orders(self) -> RemoteCollectionPort:
        if self.user_id is None:
            raise NotAuthenticated()
        return self._order_ports(self.user_id)

"""Shared fixtures: an in-memory document collection and ready-made stores."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from storefront.models import CartItem, Product, Review, WishlistItem
from storefront.state.cart import CartStore
from storefront.state.session import CommerceSession
from storefront.state.wishlist import WishlistStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeCollection:
    """In-memory RemoteCollectionPort.

    - ``fail`` holds operation names ("fetch", "add", "update", "delete",
      "subscribe") that raise ConnectionError
    - ``fail_ids`` makes writes to those document ids raise
    - ``gate``, when set, holds every operation until the event is set
    - every write publishes the new list to live subscribers unless
      ``auto_publish`` is False; ``emit`` publishes by hand
    """

    def __init__(self, name: str = "fake"):
        self.name = name
        self.docs: Dict[str, dict] = {}
        self.fail = set()
        self.fail_ids = set()
        self.gate: Optional[asyncio.Event] = None
        self.auto_publish = True
        self.calls: List[tuple] = []
        self.subscribers: List[asyncio.Queue] = []
        self.subscribe_calls = 0
        self._ids = itertools.count(1)

    def seed(self, doc_id: str, **data) -> None:
        self.docs[doc_id] = data

    def snapshot(self) -> List[dict]:
        return [dict(data, id=doc_id) for doc_id, data in self.docs.items()]

    def emit(self, docs: Optional[List[dict]] = None) -> None:
        payload = self.snapshot() if docs is None else docs
        for queue in list(self.subscribers):
            queue.put_nowait(payload)

    def calls_of(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]

    async def _op(self, op: str, document_id: Optional[str] = None, *args) -> None:
        self.calls.append((op, document_id) + args)
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()
        if op in self.fail or (document_id is not None and document_id in self.fail_ids):
            raise ConnectionError(f"{op} failed")

    def _changed(self) -> None:
        if self.auto_publish:
            self.emit()

    async def fetch_all(self) -> List[dict]:
        await self._op("fetch")
        return self.snapshot()

    async def add(self, data: dict, document_id: Optional[str] = None) -> str:
        await self._op("add", document_id, dict(data))
        doc_id = document_id or f"doc-{next(self._ids)}"
        merged = dict(self.docs.get(doc_id, {}))
        merged.update({k: v for k, v in data.items() if k != "id"})
        self.docs[doc_id] = merged
        self._changed()
        return doc_id

    async def update(self, document_id: str, fields: dict) -> None:
        await self._op("update", document_id, dict(fields))
        if document_id not in self.docs:
            raise LookupError(document_id)
        self.docs[document_id].update(fields)
        self._changed()

    async def delete(self, document_id: str) -> None:
        await self._op("delete", document_id)
        self.docs.pop(document_id, None)
        self._changed()

    async def subscribe(self):
        self.subscribe_calls += 1
        if "subscribe" in self.fail:
            raise ConnectionError("stream failed")
        queue: asyncio.Queue = asyncio.Queue()
        self.subscribers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self.subscribers.remove(queue)


class FakeBackend:
    """Collections keyed by path, handed out per user like the real store."""

    def __init__(self):
        self.collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, path: str) -> FakeCollection:
        return self.collections.setdefault(path, FakeCollection(path))

    def factory(self, template: str):
        def make(user_id: str) -> FakeCollection:
            return self[template.format(user_id=user_id)]

        return make


async def settle(rounds: int = 10) -> None:
    """Let background tasks (subscription pumps) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_product(
    product_id: Optional[str] = "p1",
    price: float = 10.0,
    discount: Optional[float] = None,
    stock: Optional[int] = None,
    categories=(),
    stars=(),
    created_at: Optional[datetime] = None,
    title: Optional[str] = None,
) -> Product:
    return Product(
        id=product_id,
        title=title or f"Product {product_id}",
        base_price=price,
        discount_price=discount,
        stock_quantity=stock,
        category_ids=tuple(categories),
        reviews=tuple(Review(stars=s) for s in stars),
        created_at=created_at,
    )


def cart_doc(product: Product, quantity: int = 1, minutes_ago: int = 0, variants=None) -> dict:
    return CartItem(
        product_id=product.id,
        quantity=quantity,
        product=product,
        selected_variants=variants,
        added_at=BASE_TIME - timedelta(minutes=minutes_ago),
    ).to_document()


def wishlist_doc(product: Product, minutes_ago: int = 0) -> dict:
    return WishlistItem(
        product_id=product.id,
        product=product,
        added_at=BASE_TIME - timedelta(minutes=minutes_ago),
    ).to_document()


@pytest.fixture
def backend():
    """Fresh in-memory backend."""
    return FakeBackend()


@pytest.fixture
def cart_remote(backend):
    """The cart collection of user u1."""
    return backend["users/u1/cart"]


@pytest.fixture
def wishlist_remote(backend):
    """The wishlist collection of user u1."""
    return backend["users/u1/wishlist"]


@pytest.fixture
def cart(backend):
    """Cart store wired to the fake backend, not loaded."""
    store = CartStore(backend.factory("users/{user_id}/cart"))
    yield store
    store.reset()


@pytest.fixture
def wishlist(backend):
    """Wishlist store wired to the fake backend, not loaded."""
    store = WishlistStore(backend.factory("users/{user_id}/wishlist"))
    yield store
    store.reset()


@pytest.fixture
async def live_cart(cart):
    """Cart loaded for u1 with a running subscription."""
    await cart.load("u1")
    await settle()
    return cart


@pytest.fixture
async def live_wishlist(wishlist):
    """Wishlist loaded for u1 with a running subscription."""
    await wishlist.load("u1")
    await settle()
    return wishlist


@pytest.fixture
def session(backend):
    """Commerce session over the fake backend."""
    s = CommerceSession(
        cart_ports=backend.factory("users/{user_id}/cart"),
        wishlist_ports=backend.factory("users/{user_id}/wishlist"),
        order_ports=backend.factory("users/{user_id}/orders"),
    )
    yield s
    s.sign_out()


@pytest.fixture
def shoe():
    return make_product("shoe", price=20.0, stock=5, categories=("men",))


@pytest.fixture
def shirt():
    return make_product("shirt", price=25.0, discount=15.0, categories=("men",))

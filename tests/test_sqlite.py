"""Tests for the SQLite document collection."""

import asyncio

import pytest

from storefront.constants import CART_COLLECTION
from storefront.db.port import RemoteCollectionPort
from storefront.db.sqlite import SqliteCollection, collection_factory, init_db
from storefront.state.cart import CartStore

from conftest import make_product


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "store.db")
    init_db(path)
    return path


@pytest.fixture
def collection(db_path):
    return SqliteCollection("users/u1/cart", db_path=db_path)


class TestCollection:
    def test_is_a_port(self, collection):
        assert isinstance(collection, RemoteCollectionPort)

    async def test_add_fetch_update_delete(self, collection):
        doc_id = await collection.add({"product_id": "shoe", "quantity": 1})

        assert await collection.fetch_all() == [{"product_id": "shoe", "quantity": 1, "id": doc_id}]

        await collection.update(doc_id, {"quantity": 3})
        assert (await collection.get(doc_id))["quantity"] == 3

        await collection.delete(doc_id)
        assert await collection.fetch_all() == []
        assert await collection.get(doc_id) is None

    async def test_add_with_id_merges(self, collection):
        await collection.add({"product_id": "shoe", "note": "x"}, document_id="shoe")
        await collection.add({"product_id": "shoe", "quantity": 2}, document_id="shoe")

        docs = await collection.fetch_all()
        assert docs == [{"product_id": "shoe", "note": "x", "quantity": 2, "id": "shoe"}]

    async def test_update_missing_document(self, collection):
        with pytest.raises(LookupError):
            await collection.update("missing", {"quantity": 1})

    async def test_collections_are_isolated(self, db_path, collection):
        other = SqliteCollection("users/u2/cart", db_path=db_path)
        await collection.add({"product_id": "shoe"})

        assert await other.fetch_all() == []

    def test_factory_formats_user_path(self, db_path):
        make = collection_factory(CART_COLLECTION, db_path)

        assert make("u7").collection == "users/u7/cart"


class TestSubscribe:
    async def test_initial_list_then_changes(self, collection):
        await collection.add({"product_id": "shoe"}, document_id="a")
        stream = collection.subscribe()
        try:
            first = await asyncio.wait_for(anext(stream), 2)
            assert [d["id"] for d in first] == ["a"]

            await collection.add({"product_id": "hat"}, document_id="b")
            second = await asyncio.wait_for(anext(stream), 2)
            assert [d["id"] for d in second] == ["a", "b"]
        finally:
            await stream.aclose()

    async def test_queued_writes_collapse_to_newest_list(self, collection):
        stream = collection.subscribe()
        try:
            assert await asyncio.wait_for(anext(stream), 2) == []

            await collection.add({"product_id": "shoe"}, document_id="a")
            await collection.add({"product_id": "hat"}, document_id="b")
            latest = await asyncio.wait_for(anext(stream), 2)

            assert [d["id"] for d in latest] == ["a", "b"]
        finally:
            await stream.aclose()


class TestCartOverSqlite:
    async def test_repeated_add_writes_one_document(self, db_path):
        cart = CartStore(collection_factory(CART_COLLECTION, db_path))
        shoe = make_product("shoe", price=20.0)
        try:
            await cart.load("u1")
            assert await cart.add_product(shoe)
            assert await cart.add_product(shoe)

            docs = await SqliteCollection("users/u1/cart", db_path=db_path).fetch_all()
            assert len(docs) == 1
            assert docs[0]["quantity"] == 2
            assert cart.items[0].quantity == 2
        finally:
            cart.reset()
            await asyncio.sleep(0)

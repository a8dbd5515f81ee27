from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from storefront.config import settings
from storefront.constants import DEFAULT_DELIVERY, PRODUCTS_COLLECTION
from storefront.db.sqlite import SqliteCollection
from storefront.errors import (
    ItemNotFound,
    NotAuthenticated,
    RemoteFetchFailed,
    RemoteWriteFailed,
    StockExceeded,
    StoreNotReady,
)
from storefront.models import FilterQuery, Product, SortOption
from storefront.services.catalog_filter import apply_filters, deduplicate_products
from storefront.services.checkout import place_order
from storefront.services.pricing import compute_subtotal
from storefront.services.receipt_pdf import generate_receipt_pdf
from storefront.state.session import CommerceSession
from storefront.state.store import ReconcilingStore
from storefront.utils.formatters import money, percent

app = FastAPI(title="Storefront Web")

_STATUS = {
    NotAuthenticated: 401,
    ItemNotFound: 404,
    StockExceeded: 409,
    StoreNotReady: 409,
    RemoteWriteFailed: 502,
    RemoteFetchFailed: 502,
}


@app.on_event("startup")
def _startup() -> None:
    if getattr(app.state, "session", None) is None:
        app.state.session = CommerceSession.from_sqlite()
    if getattr(app.state, "products", None) is None:
        app.state.products = SqliteCollection(PRODUCTS_COLLECTION)


@app.on_event("shutdown")
def _shutdown() -> None:
    session = getattr(app.state, "session", None)
    if session is not None:
        session.sign_out()


def _session(request: Request) -> CommerceSession:
    return request.app.state.session


def _raise_store_error(store: ReconcilingStore) -> None:
    err = store.last_error
    store.clear_error()
    status = _STATUS.get(type(err), 400)
    raise HTTPException(status_code=status, detail=err.message if err else "request failed")


def _item_out(item) -> Dict[str, Any]:
    doc = item.to_document()
    doc["id"] = item.id
    return doc


def _store_out(store: ReconcilingStore) -> Dict[str, Any]:
    return {
        "state": store.state.value,
        "is_loading": store.is_loading,
        "error": store.last_error.message if store.last_error else None,
        "items": [_item_out(it) for it in store.items],
    }


async def _product(request: Request, product_id: str) -> Product:
    doc = await request.app.state.products.get(product_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return Product.from_document(doc)


# ---------------- models ----------------

class SignInIn(BaseModel):
    user_id: str = Field(..., min_length=1)


class CartAddIn(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)
    selected_variants: Optional[Dict[str, str]] = None


class QuantityIn(BaseModel):
    quantity: int = Field(..., gt=0)


class WishlistAddIn(BaseModel):
    product_id: str


class ProductIn(BaseModel):
    id: str
    title: str
    base_price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock_quantity: Optional[int] = Field(None, ge=0)
    category_ids: List[str] = []
    description: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[str] = None


class CheckoutIn(BaseModel):
    delivery: str = DEFAULT_DELIVERY
    receipt: bool = True


# ---------------- session ----------------

@app.post("/session")
async def sign_in(body: SignInIn, request: Request):
    session = _session(request)
    await session.sign_in(body.user_id)
    return {"user_id": session.user_id, "cart": _store_out(session.cart), "wishlist": _store_out(session.wishlist)}


@app.post("/session/refresh")
async def refresh(request: Request):
    session = _session(request)
    if session.user_id is None:
        raise HTTPException(status_code=401, detail=NotAuthenticated().message)
    await session.refresh()
    return {"user_id": session.user_id}


@app.delete("/session")
def sign_out(request: Request):
    _session(request).sign_out()
    return {"user_id": None}


# ---------------- cart ----------------

@app.get("/cart")
def cart(request: Request, delivery_fee: Optional[float] = None, apply_threshold: bool = True):
    store = _session(request).cart
    summary = store.summary(delivery_fee, apply_threshold)
    progress = store.free_shipping_progress()
    out = _store_out(store)
    out["summary"] = summary._asdict()
    out["summary_text"] = {k: money(v) for k, v in summary._asdict().items() if k != "total_item_count"}
    out["free_shipping"] = {
        "remaining": progress.remaining,
        "progress": progress.progress,
        "label": percent(progress.progress),
    }
    return out


@app.post("/cart/items")
async def cart_add(body: CartAddIn, request: Request):
    store = _session(request).cart
    product = await _product(request, body.product_id)
    if not await store.add_product(product, body.quantity, body.selected_variants):
        _raise_store_error(store)
    return _store_out(store)


def _cart_item(store, item_id: str):
    for it in store.items:
        if it.id == item_id:
            return it
    raise HTTPException(status_code=404, detail=ItemNotFound().message)


@app.patch("/cart/items/{item_id}")
async def cart_update(item_id: str, body: QuantityIn, request: Request):
    store = _session(request).cart
    if not await store.update_quantity(_cart_item(store, item_id), body.quantity):
        _raise_store_error(store)
    return _store_out(store)


@app.delete("/cart/items/{item_id}")
async def cart_remove(item_id: str, request: Request):
    store = _session(request).cart
    if not await store.remove(_cart_item(store, item_id)):
        _raise_store_error(store)
    return _store_out(store)


@app.delete("/cart")
async def cart_clear(request: Request):
    store = _session(request).cart
    if not await store.clear():
        _raise_store_error(store)
    return _store_out(store)


# ---------------- wishlist ----------------

@app.get("/wishlist")
def wishlist(request: Request):
    return _store_out(_session(request).wishlist)


@app.post("/wishlist/items")
async def wishlist_add(body: WishlistAddIn, request: Request):
    store = _session(request).wishlist
    product = await _product(request, body.product_id)
    if not await store.add_product(product):
        _raise_store_error(store)
    return _store_out(store)


@app.delete("/wishlist/items/{product_id}")
async def wishlist_remove(product_id: str, request: Request):
    store = _session(request).wishlist
    if not await store.remove_product(product_id):
        _raise_store_error(store)
    return _store_out(store)


@app.post("/wishlist/toggle/{product_id}")
async def wishlist_toggle(product_id: str, request: Request):
    store = _session(request).wishlist
    product = await _product(request, product_id)
    if not await store.toggle(product):
        _raise_store_error(store)
    return {"product_id": product_id, "in_wishlist": store.is_member(product_id)}


# ---------------- products ----------------

@app.get("/products")
async def products(
    request: Request,
    sort: SortOption = SortOption.MOST_POPULAR,
    category_id: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    fallback_category_id: Optional[str] = None,
):
    session = _session(request)
    docs = await request.app.state.products.fetch_all()
    rows = deduplicate_products(Product.from_document(d) for d in docs)
    query = FilterQuery(sort=sort, category_id=category_id, min_price=min_price, max_price=max_price)
    result = apply_filters(rows, query, fallback_category_id)
    return [
        {
            **p.to_document(),
            "display_price": p.display_price,
            "in_cart": session.cart.is_member(p.id),
            "in_wishlist": session.wishlist.is_member(p.id),
        }
        for p in result
    ]


@app.get("/products/sorts")
def product_sorts():
    return [{"value": option.value, "title": option.title} for option in SortOption]


@app.post("/products")
async def products_add(body: ProductIn, request: Request):
    data = body.model_dump()
    await request.app.state.products.add(data, document_id=body.id)
    return {"id": body.id}


# ---------------- checkout ----------------

@app.post("/checkout")
async def checkout(body: CheckoutIn, request: Request):
    session = _session(request)
    ok, result = await place_order(session, body.delivery)
    if not ok:
        raise HTTPException(status_code=400, detail=result)

    receipt = generate_receipt_pdf(result) if body.receipt else None
    return {
        "order": {"id": result.id, **result.to_document()},
        "receipt": Path(receipt).name if receipt else None,
        "cart_subtotal": compute_subtotal(session.cart.items),
    }


@app.get("/receipts/{filename}", response_class=FileResponse)
def receipt(filename: str):
    p = Path(settings.receipt_dir) / Path(filename).name
    if not p.exists():
        raise HTTPException(status_code=404, detail="Receipt not found")
    return FileResponse(str(p), filename=p.name)

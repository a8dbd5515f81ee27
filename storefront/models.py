from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id() -> str:
    return f"local-{uuid.uuid4().hex}"


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def newest_first_key(item) -> tuple:
    """Sort key for ``reverse=True`` ordering by ``added_at``.

    Items without a timestamp are treated as just added and go first.
    """
    if item.added_at is None:
        return (1, _EPOCH)
    added = item.added_at if item.added_at.tzinfo else item.added_at.replace(tzinfo=timezone.utc)
    return (0, added)


def _parse_dt(v: Any) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v
    return datetime.fromisoformat(str(v))


def _format_dt(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() if v is not None else None


def _variants(v: Any) -> Optional[Dict[str, str]]:
    # an empty selection means "no variants chosen"
    if not v:
        return None
    return {str(k): str(val) for k, val in dict(v).items()}


@dataclass(frozen=True)
class Review:
    stars: int
    user_name: str = ""
    message: str = ""
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Review":
        return cls(
            stars=int(doc.get("stars", 0)),
            user_name=doc.get("user_name") or "",
            message=doc.get("message") or "",
            created_at=_parse_dt(doc.get("created_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "stars": self.stars,
            "user_name": self.user_name,
            "message": self.message,
            "created_at": _format_dt(self.created_at),
        }


@dataclass(frozen=True)
class Product:
    id: Optional[str]
    title: str
    base_price: float
    discount_price: Optional[float] = None
    stock_quantity: Optional[int] = None
    category_ids: Tuple[str, ...] = ()
    reviews: Tuple[Review, ...] = ()
    created_at: Optional[datetime] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    image_url: Optional[str] = None
    variants: Optional[Dict[str, Tuple[str, ...]]] = None

    @property
    def display_price(self) -> float:
        return self.discount_price if self.discount_price is not None else self.base_price

    @property
    def average_rating(self) -> float:
        if not self.reviews:
            return 0.0
        return sum(r.stars for r in self.reviews) / len(self.reviews)

    @property
    def review_count(self) -> int:
        return len(self.reviews)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Product":
        discount = doc.get("discount_price")
        stock = doc.get("stock_quantity")
        variants = doc.get("variants")
        return cls(
            id=doc.get("id"),
            title=doc.get("title") or "",
            base_price=float(doc.get("base_price") or 0.0),
            discount_price=float(discount) if discount is not None else None,
            stock_quantity=int(stock) if stock is not None else None,
            category_ids=tuple(doc.get("category_ids") or ()),
            reviews=tuple(Review.from_document(r) for r in doc.get("reviews") or ()),
            created_at=_parse_dt(doc.get("created_at")),
            description=doc.get("description"),
            brand=doc.get("brand"),
            image_url=doc.get("image_url"),
            variants={k: tuple(v) for k, v in variants.items()} if variants else None,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "base_price": self.base_price,
            "discount_price": self.discount_price,
            "stock_quantity": self.stock_quantity,
            "category_ids": list(self.category_ids),
            "reviews": [r.to_document() for r in self.reviews],
            "created_at": _format_dt(self.created_at),
            "description": self.description,
            "brand": self.brand,
            "image_url": self.image_url,
            "variants": {k: list(v) for k, v in self.variants.items()} if self.variants else None,
        }


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: int = 1
    product: Optional[Product] = None
    selected_variants: Optional[Dict[str, str]] = None
    added_at: Optional[datetime] = None
    id: Optional[str] = None
    local_id: str = field(default_factory=new_local_id, compare=False, repr=False)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "CartItem":
        product = doc.get("product")
        return cls(
            id=doc.get("id"),
            product_id=str(doc["product_id"]),
            quantity=int(doc.get("quantity", 1)),
            product=Product.from_document(product) if product else None,
            selected_variants=_variants(doc.get("selected_variants")),
            added_at=_parse_dt(doc.get("added_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "product": self.product.to_document() if self.product else None,
            "selected_variants": _variants(self.selected_variants),
            "added_at": _format_dt(self.added_at),
        }


@dataclass(frozen=True)
class WishlistItem:
    product_id: str
    product: Optional[Product] = None
    added_at: Optional[datetime] = None
    id: Optional[str] = None
    local_id: str = field(default_factory=new_local_id, compare=False, repr=False)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "WishlistItem":
        product = doc.get("product")
        return cls(
            id=doc.get("id"),
            product_id=str(doc["product_id"]),
            product=Product.from_document(product) if product else None,
            added_at=_parse_dt(doc.get("added_at")),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product": self.product.to_document() if self.product else None,
            "added_at": _format_dt(self.added_at),
        }


class SortOption(str, Enum):
    A_TO_Z = "a_to_z"
    MOST_POPULAR = "most_popular"
    NEWEST = "newest"
    LOWEST_PRICE = "lowest_price"
    HIGHEST_PRICE = "highest_price"
    MOST_SUITABLE = "most_suitable"

    @property
    def title(self) -> str:
        return _SORT_TITLES[self]


_SORT_TITLES = {
    SortOption.A_TO_Z: "A-Z",
    SortOption.MOST_POPULAR: "Most Popular",
    SortOption.NEWEST: "Newest",
    SortOption.LOWEST_PRICE: "Lowest Price",
    SortOption.HIGHEST_PRICE: "Highest Price",
    SortOption.MOST_SUITABLE: "Most Suitable",
}


@dataclass(frozen=True)
class FilterQuery:
    sort: SortOption = SortOption.MOST_POPULAR
    category_id: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None


@dataclass(frozen=True)
class OrderItem:
    product_id: str
    product_name: str
    unit_price: float
    quantity: int
    product_image_url: Optional[str] = None
    selected_variants: Optional[Dict[str, str]] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image_url": self.product_image_url,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "selected_variants": self.selected_variants,
        }


@dataclass(frozen=True)
class Order:
    order_number: str
    user_id: str
    status: str
    delivery_method: str
    subtotal: float
    shipping_fee: float
    tax: float
    total: float
    total_items: int
    items: Tuple[OrderItem, ...]
    created_at: datetime
    id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "delivery_method": self.delivery_method,
            "subtotal": self.subtotal,
            "shipping_fee": self.shipping_fee,
            "tax": self.tax,
            "total": self.total,
            "total_items": self.total_items,
            "items": [it.to_document() for it in self.items],
            "created_at": _format_dt(self.created_at),
        }

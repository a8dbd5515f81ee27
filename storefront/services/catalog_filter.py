from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from storefront.models import FilterQuery, Product, SortOption

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _created_key(p: Product) -> datetime:
    if p.created_at is None:
        return _OLDEST
    if p.created_at.tzinfo is None:
        return p.created_at.replace(tzinfo=timezone.utc)
    return p.created_at


# (key, reverse); sorted() is stable so ties keep their incoming order
_SORTS: Dict[SortOption, tuple[Callable[[Product], object], bool]] = {
    SortOption.A_TO_Z: (lambda p: p.title.casefold(), False),
    SortOption.MOST_POPULAR: (lambda p: p.average_rating, True),
    SortOption.NEWEST: (_created_key, True),
    SortOption.LOWEST_PRICE: (lambda p: p.display_price, False),
    SortOption.HIGHEST_PRICE: (lambda p: p.display_price, True),
    SortOption.MOST_SUITABLE: (lambda p: (p.average_rating, p.review_count), True),
}


def sort_products(products: Iterable[Product], option: SortOption) -> List[Product]:
    key, reverse = _SORTS[SortOption(option)]
    return sorted(products, key=key, reverse=reverse)


def apply_filters(
    products: Iterable[Product],
    query: FilterQuery,
    fallback_category_id: Optional[str] = None,
) -> List[Product]:
    """Filter by category and price bounds, then sort.

    The query's category wins over the fallback (the screen's own category);
    with neither set, every category passes.
    """
    result = list(products)

    category_id = query.category_id or fallback_category_id
    if category_id:
        result = [p for p in result if category_id in p.category_ids]

    if query.min_price is not None:
        result = [p for p in result if p.display_price >= query.min_price]

    if query.max_price is not None:
        result = [p for p in result if p.display_price <= query.max_price]

    return sort_products(result, query.sort)


def deduplicate_products(products: Iterable[Product]) -> List[Product]:
    """Drop repeated product ids, keeping the first occurrence.

    Products without an id are compared by value.
    """
    seen_ids = set()
    seen_anonymous: List[Product] = []
    unique: List[Product] = []
    for p in products:
        if p.id:
            if p.id in seen_ids:
                continue
            seen_ids.add(p.id)
        else:
            if p in seen_anonymous:
                continue
            seen_anonymous.append(p)
        unique.append(p)
    return unique

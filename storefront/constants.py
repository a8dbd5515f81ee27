PRODUCTS_COLLECTION = "products"

# per-user collections, formatted with the signed-in user id
CART_COLLECTION = "users/{user_id}/cart"
WISHLIST_COLLECTION = "users/{user_id}/wishlist"
ORDERS_COLLECTION = "users/{user_id}/orders"

DELIVERY_OPTIONS = {
    "STANDARD": ("Standard", 5.0),
    "EXPRESS": ("Express", 15.0),
    "OVERNIGHT": ("Overnight", 25.0),
}
DEFAULT_DELIVERY = "STANDARD"

ORDER_STATUS_ON_DELIVERY = "on_delivery"

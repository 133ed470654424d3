"""
Custom exceptions for the cart/wishlist sync service.
"""
from typing import Optional


class CartSyncException(Exception):
    """Base exception for cart and wishlist operations"""
    pass


class ApiError(CartSyncException):
    """Raised when a storefront API call fails (non-2xx or transport error)"""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class UnauthorizedError(ApiError):
    """Raised when the storefront API rejects the bearer token"""
    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message, status_code=401)


class ProductNotFoundError(ApiError):
    """Raised when a product lookup returns 404"""
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}", status_code=404)


class ValidationError(CartSyncException):
    """Raised when validation fails"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class LimitExceededError(CartSyncException):
    """Raised when guest cart limits are exceeded"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CartItemNotFoundError(CartSyncException):
    """Raised when a line item is not in the cart"""
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Cart item not found: {item_id}")


class StorageConnectionError(CartSyncException):
    """Raised when the guest storage backend is unreachable"""
    pass


class InvalidTransitionError(CartSyncException):
    """Raised when an optimistic mutation is driven out of order"""
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move mutation from {current} to {target}")

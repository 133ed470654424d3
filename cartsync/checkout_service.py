"""
Checkout service for placing an order from the current cart.
"""
import logging
from typing import Any, Dict

from cartsync.cart_service import CartService
from cartsync.exceptions import UnauthorizedError, ValidationError
from cartsync.session import hash_identifier

logger = logging.getLogger(__name__)


class CheckoutService:
    """Service for checkout operations"""

    def __init__(self, cart_service: CartService):
        self.cart_service = cart_service

    async def place_order(self, address_id: str) -> Dict[str, Any]:
        """
        Place an order for the signed-in user's cart:
        1. Refresh the cart from the server
        2. Validate it is not empty
        3. Create the order (the server empties its cart as part of this)
        4. Clear local cart state and guest storage

        Returns:
            The order as returned by the storefront API
        """
        cart_service = self.cart_service
        if not cart_service.session.is_authenticated:
            raise ValidationError("Please login to place an order")
        if not address_id:
            raise ValidationError("Address is required")

        cart = await cart_service.refresh_cart()
        if not cart_service.session.is_authenticated:
            raise UnauthorizedError()
        if cart is None or not cart.items:
            raise ValidationError("Cannot checkout empty cart")

        items = [{"productId": item.product_id, "quantity": item.quantity} for item in cart.items]
        try:
            order = await cart_service.api.create_order(address_id, items)
        except UnauthorizedError:
            await cart_service.session.clear_token()
            raise

        logger.info(
            f"Order created for user {hash_identifier(cart_service.session.user_id)}",
            extra={"order_id": (order or {}).get("id"), "item_count": cart.item_count}
        )

        cart_service.clear_cart()
        cart_service.close_cart()
        return order

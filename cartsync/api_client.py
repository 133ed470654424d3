"""
Async client for the storefront REST API (cart, wishlist, products, orders).
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as SchemaError

from cartsync.config import Config
from cartsync.exceptions import ApiError, ProductNotFoundError, UnauthorizedError
from cartsync.models import Cart, ProductSnapshot

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]
M = TypeVar("M", bound=BaseModel)


class StorefrontAPI:
    """
    Thin JSON-over-HTTP client.

    The bearer token is read from ``token_provider`` on every call, so a
    token cleared mid-session is never sent again. Calls are not retried.
    """

    def __init__(
        self,
        token_provider: Optional[TokenProvider] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None
    ):
        self.token_provider = token_provider or (lambda: None)
        self.client = httpx.AsyncClient(
            base_url=base_url or Config.API_URL,
            transport=transport,
            timeout=timeout if timeout is not None else Config.API_TIMEOUT_SECONDS,
        )

    def _headers(self, include_auth: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if include_auth:
            token = self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        include_auth: bool = True
    ) -> Any:
        try:
            response = await self.client.request(
                method, path, json=json, headers=self._headers(include_auth)
            )
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}")

        if response.status_code == 401:
            raise UnauthorizedError(self._error_message(response))
        if response.is_error:
            raise ApiError(self._error_message(response), status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ApiError(f"{method} {path} returned invalid JSON", status_code=response.status_code)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("message")
            if message:
                return str(message)
        return f"HTTP error! status: {response.status_code}"

    @staticmethod
    def _parse(model: Type[M], data: Any) -> M:
        """Validate a response body; a payload that does not fit is an API failure"""
        try:
            return model.model_validate(data)
        except SchemaError as e:
            raise ApiError(f"Malformed {model.__name__} payload: {e.error_count()} invalid field(s)")

    async def _cart_from(self, data: Any) -> Cart:
        # Mutation endpoints may answer with the touched line instead of a cart
        if isinstance(data, dict) and "items" in data:
            return self._parse(Cart, data)
        return await self.get_cart()

    # Products

    async def get_product(self, product_id: str) -> ProductSnapshot:
        try:
            data = await self._request("GET", f"/api/products/{product_id}", include_auth=False)
        except ApiError as e:
            if e.status_code == 404:
                raise ProductNotFoundError(product_id)
            raise
        return self._parse(ProductSnapshot, data)

    # Cart

    async def get_cart(self) -> Cart:
        data = await self._request("GET", "/api/cart")
        return self._parse(Cart, data)

    async def add_cart_item(self, product_id: str, quantity: int = 1) -> Cart:
        data = await self._request(
            "POST", "/api/cart/items", json={"productId": product_id, "quantity": quantity}
        )
        return await self._cart_from(data)

    async def update_cart_item(self, item_id: str, quantity: int) -> Cart:
        data = await self._request("PUT", f"/api/cart/items/{item_id}", json={"quantity": quantity})
        return await self._cart_from(data)

    async def remove_cart_item(self, item_id: str) -> Cart:
        data = await self._request("DELETE", f"/api/cart/items/{item_id}")
        return await self._cart_from(data)

    async def clear_cart(self) -> None:
        await self._request("DELETE", "/api/cart")

    # Wishlist

    @classmethod
    def _wishlist_products(cls, data: Any) -> List[ProductSnapshot]:
        items = data.get("items", []) if isinstance(data, dict) else data or []
        products = []
        for item in items:
            # Wishlist rows nest the product under "Product"; plain product lists are accepted too
            if isinstance(item, dict):
                item = item.get("Product") or item.get("product") or item
            products.append(cls._parse(ProductSnapshot, item))
        return products

    async def get_wishlist(self) -> List[ProductSnapshot]:
        data = await self._request("GET", "/api/wishlist")
        return self._wishlist_products(data)

    async def add_to_wishlist(self, product_id: str) -> List[ProductSnapshot]:
        data = await self._request("POST", "/api/wishlist/items", json={"productId": product_id})
        return self._wishlist_products(data)

    async def remove_from_wishlist(self, product_id: str) -> List[ProductSnapshot]:
        data = await self._request("DELETE", f"/api/wishlist/items/{product_id}")
        return self._wishlist_products(data)

    async def clear_wishlist(self) -> None:
        await self._request("DELETE", "/api/wishlist")

    # Orders

    async def create_order(self, address_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await self._request(
            "POST", "/api/orders", json={"addressId": address_id, "items": items}
        )

    async def close(self) -> None:
        await self.client.aclose()

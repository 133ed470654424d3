import asyncio
import json
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from cartsync.models import ProductSnapshot
from cartsync.storage import MemoryGuestStorage
from cartsync.storefront import Storefront

API_BASE_URL = "http://storefront.test"


def make_product(product_id: str, name: str, price: float, sale_price: Optional[float] = None, stock: int = 10):
    return {
        "id": product_id,
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "price": price,
        "salePrice": sale_price,
        "stock": stock,
        "images": [f"https://cdn.test/{product_id}.jpg"],
        "categoryId": "cat-1",
        "brandId": None,
    }


class FakeStorefrontServer:
    """In-memory stand-in for the storefront REST API, served through httpx.MockTransport"""

    def __init__(self):
        self.products: Dict[str, dict] = {
            "p1": make_product("p1", "Ceramic Mug", 100),
            "p2": make_product("p2", "Tea Bowl", 50, sale_price=40),
            "p3": make_product("p3", "Vase", 12.5),
        }
        self.tokens: Dict[str, str] = {"token-u1": "u1", "token-u2": "u2"}
        self.carts: Dict[str, List[dict]] = {}
        self.wishlists: Dict[str, List[str]] = {}
        self.orders: List[dict] = []
        self.requests: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], int] = {}
        self.gate: Optional[asyncio.Event] = None
        self.holds: Dict[Tuple[str, str], asyncio.Event] = {}
        self.canned: Dict[Tuple[str, str], Tuple[int, object]] = {}
        self._line_seq = 0

    def fail(self, method: str, path: str, status: int = 500) -> None:
        self.failures[(method, path)] = status

    def hold(self, method: str, path: str) -> asyncio.Event:
        """Block one route until the returned event is set"""
        event = self.holds[(method, path)] = asyncio.Event()
        return event

    def respond(self, method: str, path: str, payload: object, status: int = 200) -> None:
        self.canned[(method, path)] = (status, payload)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def seed_cart(self, user_id: str, product_id: str, quantity: int) -> str:
        self._line_seq += 1
        line_id = f"line-{self._line_seq}"
        self.carts.setdefault(user_id, []).append(
            {"id": line_id, "productId": product_id, "quantity": quantity}
        )
        return line_id

    def calls(self, method: str, path: str) -> int:
        return self.requests.count((method, path))

    # Response builders

    def _cart(self, user_id: str) -> dict:
        items = []
        subtotal = 0.0
        for line in self.carts.get(user_id, []):
            product = self.products[line["productId"]]
            items.append({**line, "cartId": f"cart-{user_id}", "product": product})
            subtotal += (product["salePrice"] or product["price"]) * line["quantity"]
        return {
            "id": f"cart-{user_id}",
            "items": items,
            "itemCount": sum(line["quantity"] for line in items),
            "subtotal": round(subtotal, 2),
        }

    def _wishlist(self, user_id: str) -> dict:
        items = [
            {"id": f"wl-{pid}", "productId": pid, "Product": self.products[pid]}
            for pid in self.wishlists.get(user_id, [])
        ]
        return {"id": f"wishlist-{user_id}", "items": items, "itemCount": len(items)}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))

        if self.gate is not None:
            await self.gate.wait()
        if (method, path) in self.holds:
            await self.holds[(method, path)].wait()

        status = self.failures.get((method, path))
        if status:
            return httpx.Response(status, json={"error": "Simulated failure"})
        if (method, path) in self.canned:
            status, payload = self.canned[(method, path)]
            return httpx.Response(status, json=payload)

        if method == "GET" and path.startswith("/api/products/"):
            product = self.products.get(path.rsplit("/", 1)[-1])
            if product is None:
                return httpx.Response(404, json={"error": "Product not found"})
            return httpx.Response(200, json=product)

        auth = request.headers.get("Authorization", "")
        user_id = self.tokens.get(auth.removeprefix("Bearer "))
        if user_id is None:
            return httpx.Response(401, json={"error": "User not authenticated"})

        body = {}
        if request.content:
            body = json.loads(request.content)

        if path == "/api/cart":
            if method == "GET":
                return httpx.Response(200, json=self._cart(user_id))
            if method == "DELETE":
                self.carts[user_id] = []
                return httpx.Response(200, json={"message": "Cart cleared"})

        if path == "/api/cart/items" and method == "POST":
            product_id = body["productId"]
            if product_id not in self.products:
                return httpx.Response(404, json={"error": "Product not found"})
            for line in self.carts.setdefault(user_id, []):
                if line["productId"] == product_id:
                    line["quantity"] += body.get("quantity", 1)
                    return httpx.Response(201, json={"message": "Product added to cart", "cartItem": line})
            line_id = self.seed_cart(user_id, product_id, body.get("quantity", 1))
            return httpx.Response(201, json={"message": "Product added to cart", "cartItem": {"id": line_id}})

        if path.startswith("/api/cart/items/"):
            line_id = path.rsplit("/", 1)[-1]
            lines = self.carts.get(user_id, [])
            line = next((line for line in lines if line["id"] == line_id), None)
            if line is None:
                return httpx.Response(404, json={"error": "Cart item not found"})
            if method == "PUT":
                line["quantity"] = body["quantity"]
                return httpx.Response(200, json={"message": "Cart item updated", "cartItem": line})
            if method == "DELETE":
                lines.remove(line)
                return httpx.Response(200, json={"message": "Item removed from cart"})

        if path == "/api/wishlist":
            if method == "GET":
                return httpx.Response(200, json=self._wishlist(user_id))
            if method == "DELETE":
                self.wishlists[user_id] = []
                return httpx.Response(200, json={"message": "Wishlist cleared"})

        if path == "/api/wishlist/items" and method == "POST":
            product_id = body["productId"]
            wishlist = self.wishlists.setdefault(user_id, [])
            if product_id in wishlist:
                return httpx.Response(400, json={"error": "Product already in wishlist"})
            wishlist.append(product_id)
            return httpx.Response(200, json={**self._wishlist(user_id), "message": "Product added to wishlist"})

        if path.startswith("/api/wishlist/items/") and method == "DELETE":
            product_id = path.rsplit("/", 1)[-1]
            wishlist = self.wishlists.setdefault(user_id, [])
            if product_id in wishlist:
                wishlist.remove(product_id)
            return httpx.Response(200, json=self._wishlist(user_id))

        if path == "/api/orders" and method == "POST":
            if not body.get("addressId") or not body.get("items"):
                return httpx.Response(400, json={"error": "Address and items are required"})
            order = {"id": f"order-{len(self.orders) + 1}", "userId": user_id, "items": body["items"]}
            self.orders.append(order)
            self.carts[user_id] = []
            return httpx.Response(201, json=order)

        return httpx.Response(404, json={"error": f"No route for {method} {path}"})


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def server():
    return FakeStorefrontServer()


@pytest.fixture
def storage():
    return MemoryGuestStorage()


@pytest.fixture
def storefront(server, storage):
    return Storefront(storage, api_base_url=API_BASE_URL, transport=server.transport())


@pytest.fixture
def product(server):
    return ProductSnapshot.model_validate(server.products["p1"])

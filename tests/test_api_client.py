"""Tests for the storefront REST client."""

import httpx
import pytest

from cartsync.api_client import StorefrontAPI
from cartsync.exceptions import ApiError, ProductNotFoundError, UnauthorizedError

API_BASE_URL = "http://storefront.test"

pytestmark = pytest.mark.anyio


def client_for(server, token=None):
    return StorefrontAPI(token_provider=lambda: token, base_url=API_BASE_URL, transport=server.transport())


class TestAuthHeader:
    async def test_token_read_on_every_call(self, server):
        tokens = ["token-u1"]
        api = StorefrontAPI(token_provider=lambda: tokens[0], base_url=API_BASE_URL, transport=server.transport())

        cart = await api.get_cart()
        assert cart.id == "cart-u1"

        tokens[0] = None
        with pytest.raises(UnauthorizedError):
            await api.get_cart()

    async def test_product_lookup_needs_no_token(self, server):
        product = await client_for(server).get_product("p2")

        assert product.sale_price == 40
        assert product.unit_price == 40
        assert product.image_url == "https://cdn.test/p2.jpg"


class TestErrors:
    async def test_missing_product(self, server):
        with pytest.raises(ProductNotFoundError) as exc_info:
            await client_for(server).get_product("nope")

        assert exc_info.value.status_code == 404
        assert exc_info.value.product_id == "nope"

    async def test_server_error_carries_message_and_status(self, server):
        server.fail("GET", "/api/cart", 500)

        with pytest.raises(ApiError) as exc_info:
            await client_for(server, "token-u1").get_cart()

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Simulated failure"

    async def test_malformed_cart_body(self, server):
        server.respond("GET", "/api/cart", {"items": "not a list"})

        with pytest.raises(ApiError) as exc_info:
            await client_for(server, "token-u1").get_cart()

        assert exc_info.value.message.startswith("Malformed Cart payload")

    async def test_non_json_success_body(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        api = StorefrontAPI(base_url=API_BASE_URL, transport=transport)

        with pytest.raises(ApiError) as exc_info:
            await api.get_product("p1")

        assert exc_info.value.status_code == 200

    async def test_non_json_error_body(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))
        api = StorefrontAPI(base_url=API_BASE_URL, transport=transport)

        with pytest.raises(ApiError) as exc_info:
            await api.get_product("p1")

        assert exc_info.value.message == "HTTP error! status: 502"

    async def test_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = StorefrontAPI(base_url=API_BASE_URL, transport=httpx.MockTransport(refuse))

        with pytest.raises(ApiError) as exc_info:
            await api.get_product("p1")

        assert exc_info.value.status_code is None


class TestCartEndpoints:
    async def test_add_answering_with_line_refetches_cart(self, server):
        api = client_for(server, "token-u1")

        cart = await api.add_cart_item("p1", 2)

        assert server.calls("GET", "/api/cart") == 1
        assert cart.items[0].product_id == "p1"
        assert cart.item_count == 2

    async def test_add_answering_with_cart_is_used_directly(self):
        body = {"id": "c1", "items": [], "itemCount": 0, "subtotal": 0}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        api = StorefrontAPI(base_url=API_BASE_URL, transport=transport)

        cart = await api.add_cart_item("p1")
        assert cart.id == "c1"


class TestWishlistEndpoints:
    async def test_nested_product_rows_are_unwrapped(self, server):
        server.wishlists["u1"] = ["p1", "p3"]

        products = await client_for(server, "token-u1").get_wishlist()

        assert [product.id for product in products] == ["p1", "p3"]
        assert products[1].name == "Vase"

    async def test_plain_product_list_accepted(self, server):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[server.products["p2"]]))
        api = StorefrontAPI(base_url=API_BASE_URL, transport=transport)

        products = await api.get_wishlist()
        assert products[0].id == "p2"

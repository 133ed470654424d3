"""Tests for guest and signed-in wishlist reconciliation."""

import asyncio
import json

import pytest

from cartsync.exceptions import ApiError, UnauthorizedError
from cartsync.models import ProductSnapshot
from cartsync.mutations import MutationState

pytestmark = pytest.mark.anyio


def snapshot(server, product_id):
    return ProductSnapshot.model_validate(server.products[product_id])


@pytest.fixture
async def signed_in(storefront):
    await storefront.session.login("u1", "token-u1")
    return storefront


class TestGuestWishlist:
    async def test_add_persists_full_product(self, storefront, storage, product):
        items = await storefront.wishlist.add_to_wishlist(product)

        assert [item.id for item in items] == ["p1"]
        stored = json.loads(storage.get_item("wishlist"))
        assert stored[0]["id"] == "p1"
        assert stored[0]["name"] == "Ceramic Mug"
        assert stored[0]["imageUrl"] == "https://cdn.test/p1.jpg"

    async def test_add_is_idempotent(self, storefront, product):
        await storefront.wishlist.add_to_wishlist(product)
        await storefront.wishlist.add_to_wishlist(product)

        assert storefront.wishlist.wishlist_count == 1

    async def test_remove(self, storefront, storage, server):
        await storefront.wishlist.add_to_wishlist(snapshot(server, "p1"))
        await storefront.wishlist.add_to_wishlist(snapshot(server, "p2"))

        items = await storefront.wishlist.remove_from_wishlist("p1")

        assert [item.id for item in items] == ["p2"]
        assert storefront.wishlist.is_in_wishlist("p1") is False
        assert [entry["id"] for entry in json.loads(storage.get_item("wishlist"))] == ["p2"]

    async def test_reload_from_storage(self, storefront, storage, server):
        await storefront.wishlist.add_to_wishlist(snapshot(server, "p3"))
        storefront.wishlist.items = []

        items = await storefront.wishlist.refresh_wishlist()
        assert [item.id for item in items] == ["p3"]
        assert items[0].price == 12.5

    async def test_corrupt_storage_is_dropped(self, storefront, storage):
        storage.set_json("wishlist", [{"name": "no id"}])

        assert await storefront.wishlist.refresh_wishlist() == []
        assert storage.get_item("wishlist") is None

    async def test_clear(self, storefront, storage, product):
        await storefront.wishlist.add_to_wishlist(product)
        await storefront.wishlist.clear_wishlist()

        assert storefront.wishlist.items == []
        assert storage.get_item("wishlist") is None


class TestSignedInWishlist:
    async def test_membership_visible_before_server_answers(self, signed_in, server, product):
        server.gate = asyncio.Event()
        task = asyncio.create_task(signed_in.wishlist.add_to_wishlist(product))
        for _ in range(200):
            if server.calls("POST", "/api/wishlist/items"):
                break
            await asyncio.sleep(0)

        assert signed_in.wishlist.is_in_wishlist("p1") is True
        assert signed_in.wishlist.last_mutation.state == MutationState.AWAITING_SERVER

        server.gate.set()
        await task
        assert signed_in.wishlist.last_mutation.state == MutationState.COMMITTED

    async def test_add_replaces_list_with_server_copy(self, signed_in, server):
        server.wishlists["u1"] = ["p3"]
        local = ProductSnapshot(id="p1", name="stale name", price=1)

        items = await signed_in.wishlist.add_to_wishlist(local)

        assert [item.id for item in items] == ["p3", "p1"]
        assert items[1].name == "Ceramic Mug"

    async def test_failed_add_restores_previous_list(self, signed_in, server):
        await signed_in.wishlist.add_to_wishlist(snapshot(server, "p3"))
        server.fail("POST", "/api/wishlist/items")

        with pytest.raises(ApiError):
            await signed_in.wishlist.add_to_wishlist(snapshot(server, "p1"))

        assert [item.id for item in signed_in.wishlist.items] == ["p3"]
        assert signed_in.wishlist.last_mutation.state == MutationState.ROLLED_BACK
        assert signed_in.notifier.drain()[-1].message == "Failed to add to wishlist. Please try again."

    async def test_unauthorized_add_falls_back_to_guest_list(self, storefront, server, storage):
        await storefront.wishlist.add_to_wishlist(snapshot(server, "p3"))
        server.wishlists["u1"] = ["p2"]
        await storefront.session.login("u1", "token-u1")
        assert [item.id for item in storefront.wishlist.items] == ["p2"]
        server.tokens.clear()

        with pytest.raises(UnauthorizedError):
            await storefront.wishlist.add_to_wishlist(snapshot(server, "p1"))

        assert storefront.session.is_authenticated is False
        assert storage.get_item("token") is None
        assert [item.id for item in storefront.wishlist.items] == ["p3"]

        # Later adds go to guest storage, on top of the guest list
        await storefront.wishlist.add_to_wishlist(snapshot(server, "p1"))
        assert [entry["id"] for entry in json.loads(storage.get_item("wishlist"))] == ["p3", "p1"]

    async def test_rejected_cart_call_also_resets_wishlist(self, storefront, server, storage):
        await storefront.wishlist.add_to_wishlist(snapshot(server, "p3"))
        server.wishlists["u1"] = ["p2"]
        await storefront.session.login("u1", "token-u1")
        server.tokens.clear()

        await storefront.cart.refresh_cart()

        assert [item.id for item in storefront.wishlist.items] == ["p3"]

    async def test_failed_remove_leaves_other_removals(self, signed_in, server):
        server.wishlists["u1"] = ["p1", "p2"]
        await signed_in.wishlist.refresh_wishlist()
        server.fail("DELETE", "/api/wishlist/items/p1")
        release = server.hold("DELETE", "/api/wishlist/items/p1")
        removing = asyncio.create_task(signed_in.wishlist.remove_from_wishlist("p1"))
        for _ in range(200):
            if server.calls("DELETE", "/api/wishlist/items/p1"):
                break
            await asyncio.sleep(0)

        await signed_in.wishlist.remove_from_wishlist("p2")
        release.set()
        with pytest.raises(ApiError):
            await removing

        assert [item.id for item in signed_in.wishlist.items] == ["p1"]
        assert server.wishlists["u1"] == ["p1"]

    async def test_remove_syncs_and_replaces(self, signed_in, server):
        server.wishlists["u1"] = ["p1", "p2"]
        await signed_in.wishlist.refresh_wishlist()

        items = await signed_in.wishlist.remove_from_wishlist("p1")

        assert [item.id for item in items] == ["p2"]
        assert server.wishlists["u1"] == ["p2"]

    async def test_failed_remove_restores(self, signed_in, server):
        server.wishlists["u1"] = ["p1"]
        await signed_in.wishlist.refresh_wishlist()
        server.fail("DELETE", "/api/wishlist/items/p1")

        with pytest.raises(ApiError):
            await signed_in.wishlist.remove_from_wishlist("p1")

        assert signed_in.wishlist.is_in_wishlist("p1") is True

    async def test_clear_calls_server(self, signed_in, server):
        server.wishlists["u1"] = ["p1"]
        await signed_in.wishlist.refresh_wishlist()

        await signed_in.wishlist.clear_wishlist()

        assert server.wishlists["u1"] == []
        assert signed_in.wishlist.items == []


class TestLoginAsymmetry:
    async def test_guest_wishlist_is_not_merged_on_login(self, storefront, storage, server, product):
        await storefront.wishlist.add_to_wishlist(product)

        await storefront.session.login("u1", "token-u1")

        assert server.calls("POST", "/api/wishlist/items") == 0
        assert server.wishlists.get("u1", []) == []
        assert storefront.wishlist.items == []
        # The guest list stays in storage untouched
        assert json.loads(storage.get_item("wishlist"))[0]["id"] == "p1"

"""
Per-session composition of the cart, wishlist and checkout services.
"""
import logging
from typing import Callable, Dict, Optional

import httpx

from cartsync.api_client import StorefrontAPI
from cartsync.cart_service import CartService
from cartsync.checkout_service import CheckoutService
from cartsync.mutations import ItemLocks
from cartsync.notifications import Notifier
from cartsync.session import AuthSession, hash_identifier
from cartsync.storage import GuestStorage, RedisGuestStorage
from cartsync.wishlist_service import WishlistService

logger = logging.getLogger(__name__)

StorageFactory = Callable[[str], GuestStorage]


class Storefront:
    """Everything one visitor's session needs, wired together"""

    def __init__(
        self,
        storage: GuestStorage,
        api_base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.storage = storage
        self.session = AuthSession(storage)
        self.notifier = Notifier()
        self.api = StorefrontAPI(
            token_provider=lambda: self.session.token,
            base_url=api_base_url,
            transport=transport,
        )
        locks = ItemLocks()
        self.cart = CartService(self.session, storage, self.api, self.notifier, locks)
        self.wishlist = WishlistService(self.session, storage, self.api, self.notifier, locks)
        self.checkout = CheckoutService(self.cart)
        self._loaded = False

        self.session.subscribe(self.cart.on_identity_change)
        self.session.subscribe(self.wishlist.on_identity_change)
        self.session.subscribe_fallback(self.cart.fall_back_to_guest)
        self.session.subscribe_fallback(self.wishlist.fall_back_to_guest)

    async def ensure_loaded(self) -> None:
        """Load cart and wishlist the first time the session is used"""
        if self._loaded:
            return
        self._loaded = True
        await self.cart.refresh_cart()
        await self.wishlist.refresh_wishlist()

    async def close(self) -> None:
        await self.api.close()


class StorefrontRegistry:
    """One Storefront per storage origin"""

    def __init__(
        self,
        storage_factory: Optional[StorageFactory] = None,
        api_base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.storage_factory = storage_factory or RedisGuestStorage
        self.api_base_url = api_base_url
        self.transport = transport
        self._storefronts: Dict[str, Storefront] = {}

    def get(self, origin: str) -> Storefront:
        storefront = self._storefronts.get(origin)
        if storefront is None:
            logger.info(f"New storefront session {hash_identifier(origin)}")
            storefront = Storefront(
                self.storage_factory(origin),
                api_base_url=self.api_base_url,
                transport=self.transport,
            )
            self._storefronts[origin] = storefront
        return storefront

    async def close(self) -> None:
        for storefront in self._storefronts.values():
            await storefront.close()
        self._storefronts.clear()

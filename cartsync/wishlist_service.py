"""
Wishlist service: set membership over products, for guests and signed-in users.

Unlike the cart, a guest wishlist is not merged into the server wishlist on
login; signing in simply switches the view to the server list.
"""
import logging
from typing import List, Optional, Tuple

from pydantic import ValidationError as SchemaError

from cartsync.api_client import StorefrontAPI
from cartsync.config import Config
from cartsync.exceptions import ApiError, CartSyncException, StorageConnectionError, UnauthorizedError
from cartsync.models import ProductSnapshot
from cartsync.mutations import ItemLocks, OptimisticMutation
from cartsync.notifications import Notifier
from cartsync.session import AuthSession
from cartsync.storage import GuestStorage

logger = logging.getLogger(__name__)


class WishlistStore:
    """Backing store for the wishlist"""

    async def load(self) -> List[ProductSnapshot]:
        raise NotImplementedError

    async def add(self, items: List[ProductSnapshot], product: ProductSnapshot) -> Optional[List[ProductSnapshot]]:
        """Persist an insert already applied to ``items``; may return the canonical list"""
        raise NotImplementedError

    async def remove(self, items: List[ProductSnapshot], product_id: str) -> Optional[List[ProductSnapshot]]:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError


class GuestWishlistStore(WishlistStore):
    """Wishlist kept as full product snapshots in guest storage"""

    def __init__(self, storage: GuestStorage):
        self.storage = storage

    def save(self, items: List[ProductSnapshot]) -> None:
        self.storage.set_json(
            Config.GUEST_WISHLIST_KEY,
            [product.model_dump(mode="json", by_alias=True) for product in items]
        )

    async def load(self) -> List[ProductSnapshot]:
        data = self.storage.get_json(Config.GUEST_WISHLIST_KEY)
        if data is None:
            return []
        try:
            return [ProductSnapshot.model_validate(entry) for entry in data]
        except (SchemaError, TypeError) as e:
            logger.error(f"Error loading wishlist: {e}")
            self.storage.remove_item(Config.GUEST_WISHLIST_KEY)
            return []

    async def add(self, items, product):
        self.save(items)
        return None

    async def remove(self, items, product_id):
        self.save(items)
        return None

    async def clear(self) -> None:
        self.storage.remove_item(Config.GUEST_WISHLIST_KEY)


class RemoteWishlistStore(WishlistStore):
    """Wishlist owned by the storefront API"""

    def __init__(self, api: StorefrontAPI):
        self.api = api

    async def load(self) -> List[ProductSnapshot]:
        return await self.api.get_wishlist()

    async def add(self, items, product):
        return await self.api.add_to_wishlist(product.id)

    async def remove(self, items, product_id):
        return await self.api.remove_from_wishlist(product_id)

    async def clear(self) -> None:
        await self.api.clear_wishlist()


class WishlistService:
    """Service for wishlist operations"""

    def __init__(
        self,
        session: AuthSession,
        storage: GuestStorage,
        api: StorefrontAPI,
        notifier: Optional[Notifier] = None,
        locks: Optional[ItemLocks] = None
    ):
        self.session = session
        self.notifier = notifier or Notifier()
        self.locks = locks or ItemLocks()
        self.guest_store = GuestWishlistStore(storage)
        self.remote_store = RemoteWishlistStore(api)

        self.items: List[ProductSnapshot] = []
        self.last_mutation: Optional[OptimisticMutation] = None

    @property
    def store(self) -> WishlistStore:
        if self.session.is_authenticated:
            return self.remote_store
        return self.guest_store

    @property
    def wishlist_count(self) -> int:
        return len(self.items)

    def is_in_wishlist(self, product_id: str) -> bool:
        return any(item.id == product_id for item in self.items)

    def _drop(self, product_id: str) -> None:
        self.items = [item for item in self.items if item.id != product_id]

    def _put_back(self, entry: Optional[Tuple[int, ProductSnapshot]]) -> None:
        """Reinsert one removed product where it was; the rest of the list is left alone"""
        if entry is None:
            return
        position, product = entry
        if self.is_in_wishlist(product.id):
            return
        items = list(self.items)
        items.insert(min(position, len(items)), product)
        self.items = items

    async def fall_back_to_guest(self) -> None:
        """Swap the server list in view for the guest list in storage"""
        try:
            self.items = await self.guest_store.load()
        except StorageConnectionError as e:
            logger.error(f"Could not load guest wishlist after rejected token: {e}")
            self.items = []

    async def _settle(self, mutation: OptimisticMutation, call, failure_message: str) -> None:
        self.last_mutation = mutation
        try:
            canonical = await call()
        except CartSyncException as e:
            mutation.rollback(e)
            logger.error(f"Mutation {mutation.name} rolled back: {type(e).__name__}: {e}")
            if isinstance(e, UnauthorizedError):
                # Stale token: the rest of the session runs as a guest
                await self.session.clear_token()
            self.notifier.error(failure_message)
            raise
        if canonical is not None:
            self.items = canonical
        mutation.commit()

    async def add_to_wishlist(self, product: ProductSnapshot) -> List[ProductSnapshot]:
        """
        Insert a product unless it is already listed.

        The insert is visible before the server answers. On success a
        signed-in user's list is replaced by the server's; on failure the
        insert is reverted.
        """
        store = self.store
        async with self.locks.hold("wishlist", product.id):
            if self.is_in_wishlist(product.id):
                return self.items

            mutation = OptimisticMutation(f"wishlist-add:{product.id}", product.id, self._drop)
            updated = self.items + [product]
            self.items = updated
            mutation.applied()

            await self._settle(
                mutation,
                lambda: store.add(updated, product),
                "Failed to add to wishlist. Please try again."
            )
        return self.items

    async def remove_from_wishlist(self, product_id: str) -> List[ProductSnapshot]:
        """Optimistically remove a product, reverting if the server refuses"""
        store = self.store
        async with self.locks.hold("wishlist", product_id):
            position = next((i for i, item in enumerate(self.items) if item.id == product_id), None)
            removed = (position, self.items[position]) if position is not None else None
            mutation = OptimisticMutation(f"wishlist-remove:{product_id}", removed, self._put_back)
            updated = [item for item in self.items if item.id != product_id]
            self.items = updated
            mutation.applied()

            await self._settle(
                mutation,
                lambda: store.remove(updated, product_id),
                "Failed to remove from wishlist. Please try again."
            )
        return self.items

    async def refresh_wishlist(self) -> List[ProductSnapshot]:
        """Reload from the backing store; a failed server fetch keeps the list"""
        if self.session.is_authenticated:
            try:
                self.items = await self.remote_store.load()
                return self.items
            except UnauthorizedError:
                # The fallback has already reloaded the guest list
                await self.session.clear_token()
                return self.items
            except ApiError as e:
                logger.warning(f"Error fetching wishlist: {e}")
                return self.items

        self.items = await self.guest_store.load()
        return self.items

    async def clear_wishlist(self) -> None:
        store = self.store
        previous = self.items
        self.items = []
        try:
            await store.clear()
        except CartSyncException as e:
            self.items = previous
            logger.error(f"Error clearing wishlist: {e}")
            if isinstance(e, UnauthorizedError):
                await self.session.clear_token()
            self.notifier.error("Failed to clear wishlist. Please try again.")
            raise

    async def on_identity_change(self, previous: Optional[str], user_id: Optional[str]) -> None:
        """Switch to the list of whoever is now signed in (or the guest list)"""
        await self.refresh_wishlist()

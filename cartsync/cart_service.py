"""
Cart service presenting one cart view for guests and signed-in users.

Guests keep their cart in guest storage as ``{productId, quantity}`` pairs;
signed-in users use the storefront cart API. Which backing store is used is
decided on every call from the session's authentication state.
"""
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

from pydantic import ValidationError as SchemaError

from cartsync.api_client import StorefrontAPI
from cartsync.config import Config
from cartsync.exceptions import (
    ApiError,
    CartItemNotFoundError,
    CartSyncException,
    LimitExceededError,
    StorageConnectionError,
    UnauthorizedError,
    ValidationError
)
from cartsync.models import Cart, CartItem, GuestCartLine, MergeResult
from cartsync.mutations import ItemLocks, OptimisticMutation
from cartsync.notifications import Notifier
from cartsync.session import AuthSession
from cartsync.storage import GuestStorage

logger = logging.getLogger(__name__)


class CartStore:
    """Backing store for the cart"""

    async def load(self) -> Optional[Cart]:
        raise NotImplementedError

    async def add(self, current: Callable[[], Optional[Cart]], product_id: str, quantity: int) -> Optional[Cart]:
        """Add a line; ``current`` returns the cart as it is when the line is applied"""
        raise NotImplementedError

    async def sync_update(self, cart: Optional[Cart], item_id: str, quantity: int) -> None:
        """Persist an update already applied to ``cart``"""
        raise NotImplementedError

    async def sync_remove(self, cart: Optional[Cart], item_id: str) -> None:
        """Persist a removal already applied to ``cart``"""
        raise NotImplementedError

    def check_quantity(self, quantity: int) -> None:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")


class GuestCartStore(CartStore):
    """Cart kept in guest storage; product details fetched from the API"""

    def __init__(self, storage: GuestStorage, api: StorefrontAPI):
        self.storage = storage
        self.api = api

    def check_quantity(self, quantity: int) -> None:
        super().check_quantity(quantity)
        if quantity > Config.MAX_QUANTITY_PER_ITEM:
            raise LimitExceededError(
                f"Quantity {quantity} exceeds maximum {Config.MAX_QUANTITY_PER_ITEM}"
            )

    def lines(self) -> List[GuestCartLine]:
        """Stored guest lines; entries that do not parse are skipped"""
        data = self.storage.get_json(Config.GUEST_CART_KEY)
        if not isinstance(data, list):
            return []

        lines = []
        for entry in data:
            try:
                lines.append(GuestCartLine.model_validate(entry))
            except SchemaError as e:
                logger.warning(f"Skipping invalid guest cart line {entry!r}: {e}")
        return lines

    def save(self, cart: Optional[Cart]) -> None:
        if cart is None or not cart.items:
            self.storage.remove_item(Config.GUEST_CART_KEY)
            return
        self.storage.set_json(
            Config.GUEST_CART_KEY,
            [
                GuestCartLine(product_id=item.product_id, quantity=item.quantity).model_dump(by_alias=True)
                for item in cart.items
            ]
        )

    async def load(self) -> Optional[Cart]:
        """Rebuild the cart from storage with current product details"""
        items: List[CartItem] = []
        for line in self.lines():
            try:
                product = await self.api.get_product(line.product_id)
            except ApiError as e:
                logger.warning(f"Skipping guest cart line {line.product_id}: {e}")
                continue
            items.append(
                CartItem(id=line.product_id, product_id=line.product_id, quantity=line.quantity, product=product)
            )

        if not items:
            return None
        return Cart.from_items(Config.GUEST_CART_ID, items)

    async def add(self, current: Callable[[], Optional[Cart]], product_id: str, quantity: int) -> Optional[Cart]:
        product = await self.api.get_product(product_id)

        # No await from here on: the line lands on the cart as it is now
        cart = current()
        items = [item.model_copy(deep=True) for item in cart.items] if cart else []
        existing = next((item for item in items if item.product_id == product_id), None)

        if existing:
            self.check_quantity(existing.quantity + quantity)
            existing.quantity += quantity
            existing.product = product
        else:
            if len(items) >= Config.MAX_ITEMS_PER_CART:
                raise LimitExceededError(f"Cart exceeds maximum items {Config.MAX_ITEMS_PER_CART}")
            items.append(CartItem(id=product_id, product_id=product_id, quantity=quantity, product=product))

        cart = Cart.from_items(Config.GUEST_CART_ID, items)
        self.save(cart)
        return cart

    async def sync_update(self, cart: Optional[Cart], item_id: str, quantity: int) -> None:
        self.save(cart)

    async def sync_remove(self, cart: Optional[Cart], item_id: str) -> None:
        self.save(cart)


class RemoteCartStore(CartStore):
    """Cart owned by the storefront API"""

    def __init__(self, api: StorefrontAPI):
        self.api = api

    async def load(self) -> Optional[Cart]:
        return await self.api.get_cart()

    async def add(self, current: Callable[[], Optional[Cart]], product_id: str, quantity: int) -> Optional[Cart]:
        return await self.api.add_cart_item(product_id, quantity)

    async def sync_update(self, cart: Optional[Cart], item_id: str, quantity: int) -> None:
        # The optimistic state is kept; the returned cart is not applied
        await self.api.update_cart_item(item_id, quantity)

    async def sync_remove(self, cart: Optional[Cart], item_id: str) -> None:
        await self.api.remove_cart_item(item_id)


class CartService:
    """Service for cart operations"""

    def __init__(
        self,
        session: AuthSession,
        storage: GuestStorage,
        api: StorefrontAPI,
        notifier: Optional[Notifier] = None,
        locks: Optional[ItemLocks] = None
    ):
        self.session = session
        self.storage = storage
        self.api = api
        self.notifier = notifier or Notifier()
        self.locks = locks or ItemLocks()
        self.guest_store = GuestCartStore(storage, api)
        self.remote_store = RemoteCartStore(api)

        self.cart: Optional[Cart] = None
        self.is_open = False
        self.is_loading = False
        self.last_mutation: Optional[OptimisticMutation] = None

    @property
    def store(self) -> CartStore:
        if self.session.is_authenticated:
            return self.remote_store
        return self.guest_store

    @property
    def cart_count(self) -> int:
        return self.cart.item_count if self.cart else 0

    def open_cart(self) -> None:
        self.is_open = True

    def close_cart(self) -> None:
        self.is_open = False

    def _line_snapshot(self, item_id: str) -> Tuple[int, str, CartItem]:
        position = next(i for i, item in enumerate(self.cart.items) if item.id == item_id)
        return position, self.cart.id, self.cart.items[position].model_copy(deep=True)

    def _put_back(self, snapshot: Tuple[int, str, CartItem]) -> None:
        """Restore one line as it was; other lines keep their current state"""
        position, cart_id, original = snapshot
        items = [item for item in self.cart.items if item.id != original.id] if self.cart else []
        items.insert(min(position, len(items)), original)
        self.cart = Cart.from_items(self.cart.id if self.cart else cart_id, items)

    async def _handle_unauthorized(self, error: UnauthorizedError) -> None:
        logger.warning(f"Cart call rejected: {error}")
        await self.session.clear_token()

    async def fall_back_to_guest(self) -> None:
        """Swap the server cart in view for the guest cart in storage"""
        try:
            self.cart = await self.guest_store.load()
        except StorageConnectionError as e:
            logger.error(f"Could not load guest cart after rejected token: {e}")
            self.cart = None

    async def add_to_cart(self, product_id: str, quantity: int = 1) -> Optional[Cart]:
        """
        Add a product, incrementing the line when it is already in the cart.

        Signed-in users get the server's cart back; guests get a cart rebuilt
        from storage with totals recomputed from scratch.
        """
        store = self.store
        store.check_quantity(quantity)

        # Panel opens before the network call resolves
        self.open_cart()
        self.is_loading = True
        try:
            async with self.locks.hold("cart", product_id):
                if store is self.guest_store and self.cart is None:
                    loaded = await self.guest_store.load()
                    if self.cart is None:
                        self.cart = loaded
                self.cart = await store.add(lambda: self.cart, product_id, quantity)
        except CartSyncException as e:
            logger.error(f"Error adding to cart: {type(e).__name__}: {e}")
            if isinstance(e, UnauthorizedError):
                await self._handle_unauthorized(e)
            self.notifier.error("Failed to add item to cart. Please try again.")
            raise
        finally:
            self.is_loading = False

        return self.cart

    async def _settle(
        self,
        mutation: OptimisticMutation,
        sync: Callable[[], Awaitable[None]],
        failure_message: str
    ) -> None:
        """Run the server/storage call for an applied mutation; roll back on failure"""
        self.last_mutation = mutation
        self.is_loading = True
        try:
            await sync()
        except CartSyncException as e:
            mutation.rollback(e)
            logger.error(f"Mutation {mutation.name} rolled back: {type(e).__name__}: {e}")
            if isinstance(e, UnauthorizedError):
                await self._handle_unauthorized(e)
            self.notifier.error(failure_message)
            raise
        finally:
            self.is_loading = False
        mutation.commit()

    async def update_cart_item(self, item_id: str, quantity: int) -> Optional[Cart]:
        """Optimistically set a line's quantity, then sync it"""
        store = self.store
        store.check_quantity(quantity)

        async with self.locks.hold("cart", item_id):
            if self.cart is None or self.cart.find_item(item_id) is None:
                raise CartItemNotFoundError(item_id)

            mutation = OptimisticMutation(f"update:{item_id}", self._line_snapshot(item_id), self._put_back)
            updated = self.cart.model_copy(deep=True)
            updated.find_item(item_id).quantity = quantity
            updated.recompute_totals()
            self.cart = updated
            mutation.applied()

            await self._settle(
                mutation,
                lambda: store.sync_update(updated, item_id, quantity),
                "Failed to update cart. Please try again."
            )

        return self.cart

    async def remove_from_cart(self, item_id: str) -> Optional[Cart]:
        """Optimistically drop a line, then sync it"""
        store = self.store

        async with self.locks.hold("cart", item_id):
            if self.cart is None or self.cart.find_item(item_id) is None:
                raise CartItemNotFoundError(item_id)

            mutation = OptimisticMutation(f"remove:{item_id}", self._line_snapshot(item_id), self._put_back)
            remaining = [item.model_copy(deep=True) for item in self.cart.items if item.id != item_id]
            if not remaining and store is self.guest_store:
                updated = None
            else:
                updated = Cart.from_items(self.cart.id, remaining)
            self.cart = updated
            mutation.applied()

            await self._settle(
                mutation,
                lambda: store.sync_remove(updated, item_id),
                "Failed to remove item. Please try again."
            )

        return self.cart

    async def refresh_cart(self) -> Optional[Cart]:
        """
        Reload the cart from its backing store.

        A failed server fetch keeps the current state; a guest reload skips
        lines whose product can no longer be fetched.
        """
        if self.session.is_authenticated:
            try:
                self.cart = await self.remote_store.load()
                return self.cart
            except UnauthorizedError as e:
                # The fallback has already reloaded the guest cart
                await self._handle_unauthorized(e)
                return self.cart
            except ApiError as e:
                # Background refresh: not shown to the user
                logger.warning(f"Error fetching cart: {e}")
                return self.cart

        self.cart = await self.guest_store.load()
        return self.cart

    def clear_cart(self) -> None:
        """
        Reset local state and forget the guest cart.

        The server cart is not touched; order creation empties it.
        """
        self.cart = None
        self.storage.remove_item(Config.GUEST_CART_KEY)

    async def merge_guest_cart(self) -> MergeResult:
        """
        Push every guest line to the server cart, best effort.

        Lines are added one at a time; a failing line is logged and skipped.
        Guest storage is deleted afterwards whatever happened, then the cart is
        reloaded from the server. Never raises.
        """
        result = MergeResult()
        try:
            lines = self.guest_store.lines()
        except StorageConnectionError as e:
            logger.error(f"Could not read guest cart for merge: {e}")
            return result

        for line in lines:
            result.attempted += 1
            try:
                await self.api.add_cart_item(line.product_id, line.quantity)
                result.merged += 1
            except ApiError as e:
                logger.warning(f"Failed to merge guest line {line.product_id}: {e}")
                result.failed.append(line.product_id)

        try:
            self.storage.remove_item(Config.GUEST_CART_KEY)
        except StorageConnectionError as e:
            logger.error(f"Could not delete guest cart after merge: {e}")

        try:
            await self.refresh_cart()
        except CartSyncException as e:
            logger.error(f"Could not refresh cart after merge: {e}")

        if result.attempted:
            logger.info(
                f"Merged guest cart: {result.merged}/{result.attempted} lines",
                extra={"merged": result.merged, "failed": len(result.failed)}
            )
        if result.failed:
            self.notifier.error("Some items from your guest cart could not be added.")
        return result

    async def on_identity_change(self, previous: Optional[str], user_id: Optional[str]) -> None:
        """Merge on login; drop the server cart from view on logout"""
        if user_id is not None:
            await self.merge_guest_cart()
        else:
            self.cart = None
            self.close_cart()

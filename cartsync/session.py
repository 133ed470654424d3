"""
Authentication state for one storage origin.
"""
import hashlib
import logging
from typing import Awaitable, Callable, List, Optional

from cartsync.config import Config
from cartsync.storage import GuestStorage

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str], Optional[str]], Awaitable[None]]
FallbackListener = Callable[[], Awaitable[None]]


def hash_identifier(identifier: str) -> str:
    """Hash identifier for logging (no PII)"""
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


class AuthSession:
    """
    Current identity plus the bearer token kept in guest storage.

    Identity listeners are awaited with ``(previous_user_id, user_id)``
    whenever the identity changes, and only then. Fallback listeners are
    awaited when the server rejects the token and the session drops back to
    guest mode.
    """

    def __init__(self, storage: GuestStorage):
        self.storage = storage
        self.user_id: Optional[str] = None
        self._listeners: List[IdentityListener] = []
        self._fallback_listeners: List[FallbackListener] = []

    @property
    def token(self) -> Optional[str]:
        return self.storage.get_item(Config.TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None and self.token is not None

    def subscribe(self, listener: IdentityListener) -> None:
        self._listeners.append(listener)

    def subscribe_fallback(self, listener: FallbackListener) -> None:
        self._fallback_listeners.append(listener)

    async def _changed(self, previous: Optional[str]) -> None:
        for listener in self._listeners:
            await listener(previous, self.user_id)

    async def login(self, user_id: str, token: str) -> bool:
        """Store the token; returns True when this is a new identity"""
        self.storage.set_item(Config.TOKEN_KEY, token)
        if user_id == self.user_id:
            return False
        previous = self.user_id
        self.user_id = user_id
        logger.info(f"Login: user {hash_identifier(user_id)}")
        await self._changed(previous)
        return True

    async def logout(self) -> None:
        self.storage.remove_item(Config.TOKEN_KEY)
        if self.user_id is None:
            return
        previous = self.user_id
        self.user_id = None
        logger.info(f"Logout: user {hash_identifier(previous)}")
        await self._changed(previous)

    async def clear_token(self) -> None:
        """
        Drop a token the server rejected.

        Identity listeners are not told: nothing is merged or reset. Fallback
        listeners reload their state from guest storage so server data never
        ends up saved as guest data.
        """
        logger.warning("Clearing rejected token; continuing as guest")
        self.storage.remove_item(Config.TOKEN_KEY)
        self.user_id = None
        for listener in self._fallback_listeners:
            await listener()

"""
Optimistic update bookkeeping.

Each mutation moves through
APPLYING -> AWAITING_SERVER -> COMMITTED | ROLLED_BACK
and carries the snapshot taken before it touched local state.
"""
import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

from cartsync.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MutationState(str, Enum):
    APPLYING = "applying"
    AWAITING_SERVER = "awaiting_server"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS = {
    MutationState.APPLYING: {MutationState.AWAITING_SERVER, MutationState.COMMITTED, MutationState.ROLLED_BACK},
    MutationState.AWAITING_SERVER: {MutationState.COMMITTED, MutationState.ROLLED_BACK},
    MutationState.COMMITTED: set(),
    MutationState.ROLLED_BACK: set(),
}


class OptimisticMutation(Generic[T]):
    """
    One optimistic change to a piece of local state.

    ``restore`` is called with the captured snapshot on rollback.
    """

    def __init__(self, name: str, snapshot: T, restore: Callable[[T], None]):
        self.name = name
        self.snapshot = snapshot
        self._restore = restore
        self.state = MutationState.APPLYING
        self.error: Optional[BaseException] = None

    def _move(self, target: MutationState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, target.value)
        logger.debug(f"Mutation {self.name}: {self.state.value} -> {target.value}")
        self.state = target

    def applied(self) -> None:
        """Local state now reflects the change; the server call is in flight"""
        self._move(MutationState.AWAITING_SERVER)

    def commit(self) -> None:
        self._move(MutationState.COMMITTED)

    def rollback(self, error: Optional[BaseException] = None) -> None:
        self._move(MutationState.ROLLED_BACK)
        self.error = error
        self._restore(self.snapshot)

    @property
    def settled(self) -> bool:
        return self.state in (MutationState.COMMITTED, MutationState.ROLLED_BACK)


class ItemLocks:
    """One lock per (container, item) so mutations of the same item run in order"""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, container: str, item_id: str):
        lock = self._locks[(container, item_id)]
        async with lock:
            yield

    def locked(self, container: str, item_id: str) -> bool:
        key = (container, item_id)
        return key in self._locks and self._locks[key].locked()

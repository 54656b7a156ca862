"""Client-side marksheet cache and optimistic updates.

Local state changes only from confirmed responses, with one exception:
optimistic values. An ``OptimisticValue`` moves through an explicit
pending -> confirmed | reverted lifecycle. On failure the previous value is
restored and that restored value is what gets persisted from then on.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Generic, Iterable, List, Optional, TypeVar, Union

from marksheet_dispatch.models.marksheet import Marksheet
from marksheet_dispatch.services.bulk_coordinator import BulkOutcome
from marksheet_dispatch.services.transition_service import TransitionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OptimisticStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    REVERTED = "reverted"


class OptimisticValue(Generic[T]):
    """A locally cached value that can be updated ahead of the remote.

    Args:
        value: The current confirmed value
        persist: Called with the settled value after confirm/revert
    """

    def __init__(self, value: T, persist: Optional[Callable[[T], None]] = None):
        self.value = value
        self.status = OptimisticStatus.CONFIRMED
        self._previous: Optional[T] = None
        self._persist = persist

    def begin(self, new_value: T) -> None:
        if self.status is OptimisticStatus.PENDING:
            raise RuntimeError("An optimistic update is already in flight")
        self._previous = self.value
        self.value = new_value
        self.status = OptimisticStatus.PENDING

    def confirm(self) -> None:
        self._settle(OptimisticStatus.CONFIRMED)

    def revert(self) -> None:
        self.value = self._previous  # type: ignore[assignment]
        self._settle(OptimisticStatus.REVERTED)

    def _settle(self, status: OptimisticStatus) -> None:
        if self.status is not OptimisticStatus.PENDING:
            raise RuntimeError("No optimistic update in flight")
        self.status = status
        self._previous = None
        if self._persist is not None:
            self._persist(self.value)

    async def apply(self, new_value: T, remote: Callable[[], Awaitable[object]]) -> bool:
        """Show ``new_value`` now, run ``remote``, confirm or revert.

        Returns:
            bool: True if confirmed, False if reverted
        """
        self.begin(new_value)
        try:
            await remote()
        except Exception as e:
            logger.warning(f"Optimistic update reverted: {e}")
            self.revert()
            return False
        self.confirm()
        return True


class LocalMarksheetCache:
    """Caller-side view of marksheets, reconciled from confirmed results.

    The visited flag of each marksheet is an ``OptimisticValue`` so callers
    can tell a pending toggle from a confirmed or reverted one.
    """

    def __init__(self, marksheets: Iterable[Marksheet] = ()):
        self._items: Dict[str, Marksheet] = {m.id: m for m in marksheets}
        self._visited: Dict[str, OptimisticValue[bool]] = {}

    def get(self, marksheet_id: str) -> Optional[Marksheet]:
        marksheet = self._items.get(marksheet_id)
        flag = self._visited.get(marksheet_id)
        if marksheet is None or flag is None or flag.value == marksheet.visited:
            return marksheet
        return marksheet.model_copy(update={"visited": flag.value})

    def all(self) -> List[Marksheet]:
        return [m for m in (self.get(i) for i in self._items) if m is not None]

    def replace_all(self, marksheets: Iterable[Marksheet]) -> None:
        self._items = {m.id: m for m in marksheets}
        self._visited = {
            i: flag for i, flag in self._visited.items()
            if i in self._items and flag.status is OptimisticStatus.PENDING
        }

    def reconcile(self, outcome: Union[BulkOutcome, TransitionResult]) -> int:
        """Apply confirmed marksheets from a result; failures leave entries untouched.

        Returns:
            int: Number of cached marksheets updated
        """
        results = outcome.results if isinstance(outcome, BulkOutcome) else [outcome]
        updated = 0
        for result in results:
            if result.success and result.marksheet is not None:
                self._items[result.marksheet_id] = result.marksheet
                flag = self._visited.get(result.marksheet_id)
                if flag is not None and flag.status is not OptimisticStatus.PENDING:
                    del self._visited[result.marksheet_id]
                updated += 1
        return updated

    def visited_flag(self, marksheet_id: str) -> OptimisticValue[bool]:
        """The optimistic visited flag of a cached marksheet.

        Raises:
            KeyError: If the marksheet is not cached
        """
        if marksheet_id not in self._visited:
            marksheet = self._items[marksheet_id]

            def persist(value: bool) -> None:
                current = self._items[marksheet_id]
                self._items[marksheet_id] = current.model_copy(update={"visited": value})

            self._visited[marksheet_id] = OptimisticValue(marksheet.visited, persist=persist)
        return self._visited[marksheet_id]

    async def set_visited(
        self,
        marksheet_id: str,
        visited: bool,
        remote: Callable[[str, bool], Awaitable[None]],
    ) -> bool:
        """Optimistically toggle the visited flag, reverting if ``remote`` fails."""
        flag = self.visited_flag(marksheet_id)
        return await flag.apply(visited, lambda: remote(marksheet_id, visited))

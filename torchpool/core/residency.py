"""Tracking of which data objects are loaded into every worker."""
from __future__ import annotations

from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional

from .errors import NotResidentError
from .logging import core_logger, summarize_for_log
from .process_pool import ProcessPool
from .worker_protocol import FORGET, FORGOTTEN, STORE, STORED, make_message


class ResidencySet:
    """Insertion-ordered set of object ids resident on all workers."""

    def __init__(self, ids: Iterable[Hashable] = ()):
        self._ids: Dict[Hashable, None] = dict.fromkeys(ids)

    def add(self, object_id: Hashable):
        self._ids[object_id] = None

    def remove(self, object_id: Hashable):
        if object_id not in self._ids:
            raise NotResidentError(object_id)
        del self._ids[object_id]

    def clear(self):
        self._ids.clear()

    def ids(self) -> List[Hashable]:
        return list(self._ids)

    def __contains__(self, object_id) -> bool:
        return object_id in self._ids

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self):
        return f"ResidencySet({self.ids()!r})"


class ResidencyTracker:
    def __init__(self, pool: ProcessPool, residency: Optional[ResidencySet] = None):
        self.pool = pool
        self.residency = residency if residency is not None else ResidencySet()

    async def load(self, object_id: Hashable, input: Any, output: Any):
        """Store an object on every worker; it becomes resident once all have acknowledged.

        If any worker fails, BroadcastError propagates and the id is not recorded even
        though some workers may hold it.
        """
        core_logger.debug(
            f"store id={object_id} input={summarize_for_log(input)} output={summarize_for_log(output)}"
        )
        await self.pool.broadcast(make_message(STORE, id=object_id, input=input, output=output), STORED)
        self.residency.add(object_id)

    async def unload(self, object_id: Hashable):
        if object_id not in self.residency:
            raise NotResidentError(object_id)
        await self.pool.broadcast(make_message(FORGET, id=object_id), FORGOTTEN)
        self.residency.remove(object_id)
        core_logger.debug(f"forgot id={object_id}")

    @property
    def ids(self) -> List[Hashable]:
        return self.residency.ids()

    def __contains__(self, object_id) -> bool:
        return object_id in self.residency

    def __len__(self) -> int:
        return len(self.residency)


__all__ = ["ResidencySet", "ResidencyTracker"]

"""Round-robin evaluation of resident objects across the pool."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Hashable, List, Sequence

from .errors import MissingResultError, ProtocolError
from .logging import core_logger
from .process_pool import ProcessPool
from .worker_protocol import (
    EVALUATE,
    EVALUATE_BATCH,
    EVALUATION_COMPLETED,
    ITERATION,
    ITERATION_COMPLETED,
    Message,
    make_message,
)

BatchAssignment = Dict[int, List[Hashable]]


def partition(ids: Sequence[Hashable], worker_count: int) -> BatchAssignment:
    """Assign ``ids[i]`` to worker ``i % worker_count``; empty buckets are omitted."""
    if worker_count < 1:
        raise ValueError(f"worker_count must be >= 1, got {worker_count}")
    buckets: BatchAssignment = {}
    for i, object_id in enumerate(ids):
        buckets.setdefault(i % worker_count, []).append(object_id)
    return dict(sorted(buckets.items()))


def _objects(reply: Message) -> List[Dict[str, Any]]:
    objects = reply.get("objects")
    if not isinstance(objects, list):
        raise ProtocolError(f"'{reply.type}' reply without an objects list")
    for obj in objects:
        if not isinstance(obj, dict) or "id" not in obj:
            raise ProtocolError(f"'{reply.type}' reply holds an entry without an id: {obj!r}")
    return objects


class BatchDispatcher:
    def __init__(self, pool: ProcessPool):
        self.pool = pool

    async def evaluate(self, ids: Sequence[Hashable]) -> List[Dict[str, Any]]:
        """Evaluate resident objects on all workers, results in the order of ``ids``."""
        ids = list(ids)
        if not ids:
            return []
        assignment = partition(ids, self.pool.size)

        async def _run(index: int, samples: List[Hashable]):
            reply = await self.pool.worker(index).exchange(make_message(EVALUATE, samples=samples), EVALUATION_COMPLETED)
            return _objects(reply)

        # every bucket settles before an error is raised so no channel is left mid-exchange
        results = await asyncio.gather(*(_run(i, samples) for i, samples in assignment.items()), return_exceptions=True)
        for index, result in zip(assignment, results):
            if isinstance(result, BaseException):
                core_logger.error(f"evaluation on worker {index} failed: {result}")
        for result in results:
            if isinstance(result, BaseException):
                raise result
        merged: Dict[Hashable, Dict[str, Any]] = {}
        for objects in results:
            for obj in objects:
                merged[obj.get("id")] = obj
        missing = [i for i in ids if i not in merged]
        if missing:
            raise MissingResultError(missing)
        core_logger.debug(f"evaluated {len(ids)} objects on {len(assignment)} worker(s)")
        return [merged[i] for i in ids]

    # Prepared batch files are only understood by worker 0 for now.
    async def evaluate_batch(self, batch_filename: str) -> List[Dict[str, Any]]:
        reply = await self.pool.worker(0).exchange(
            make_message(EVALUATE_BATCH, batchFilename=batch_filename), EVALUATION_COMPLETED
        )
        return _objects(reply)

    async def execute_training_iteration(self, batch_filename: str) -> Message:
        return await self.pool.worker(0).exchange(make_message(ITERATION, batchFilename=batch_filename), ITERATION_COMPLETED)


__all__ = ["BatchDispatcher", "BatchAssignment", "partition"]

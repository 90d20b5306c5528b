import asyncio

import pytest

from torchpool.core.errors import BroadcastError, NotResidentError
from torchpool.core.process_pool import ProcessPool
from torchpool.core.residency import ResidencySet, ResidencyTracker
from torchpool.core.worker_protocol import make_message


def test_residency_set_basics():
    rs = ResidencySet(["a", "b"])
    rs.add("c")
    rs.add("a")
    assert rs.ids() == ["a", "b", "c"]
    rs.remove("b")
    assert "b" not in rs and len(rs) == 2
    with pytest.raises(NotResidentError):
        rs.remove("zzz")
    with pytest.raises(KeyError):
        rs.remove("zzz")


async def _stored_on_workers(pool):
    replies = await pool.broadcast(make_message("stats"))
    return [r.get("stats")["stored"] for r in replies]


def test_load_then_unload_leaves_every_worker_empty(folder, make_settings):
    async def scenario():
        pool = ProcessPool(folder.root, make_settings(worker_count=3))
        await pool.start()
        try:
            tracker = ResidencyTracker(pool)
            await tracker.load("a", {"text": "hello"}, {"label": 1})
            assert tracker.ids == ["a"]
            assert await _stored_on_workers(pool) == [["a"], ["a"], ["a"]]
            await tracker.unload("a")
            assert len(tracker) == 0
            assert await _stored_on_workers(pool) == [[], [], []]
        finally:
            await pool.stop()

    asyncio.run(scenario())


def test_reset_keeps_loaded_objects(folder, make_settings):
    async def scenario():
        pool = ProcessPool(folder.root, make_settings(worker_count=2))
        await pool.start()
        try:
            tracker = ResidencyTracker(pool)
            for object_id in ("a", "b"):
                await tracker.load(object_id, {"v": object_id}, {"v": object_id.upper()})
            await pool.reset()
            assert tracker.ids == ["a", "b"]
            assert await _stored_on_workers(pool) == [["a", "b"], ["a", "b"]]
        finally:
            await pool.stop()

    asyncio.run(scenario())


def test_unload_unknown_id_contacts_no_worker(folder, make_settings, received):
    async def scenario():
        pool = ProcessPool(folder.root, make_settings(worker_count=2))
        await pool.start()
        try:
            with pytest.raises(NotResidentError):
                await ResidencyTracker(pool).unload("ghost")
        finally:
            await pool.stop()

    asyncio.run(scenario())
    assert received(1, "forget") == [] and received(2, "forget") == []


def test_partial_store_failure_does_not_record_residency(folder, make_settings):
    async def scenario():
        pool = ProcessPool(folder.root, make_settings(mode="fail:store@2", worker_count=2))
        await pool.start()
        try:
            residency = ResidencySet()
            tracker = ResidencyTracker(pool, residency)
            with pytest.raises(BroadcastError) as exc_info:
                await tracker.load("a", [1, 2], [3])
            assert list(exc_info.value.failures) == [1]
            assert "a" not in residency
            # worker 1 stored it anyway: the pool is now inconsistent
            assert await _stored_on_workers(pool) == [["a"], []]
        finally:
            await pool.stop()

    asyncio.run(scenario())

import asyncio
import base64
import json
import sys
import time

import pytest

from torchpool.core.controller import TrainingController
from torchpool.core.errors import DiagramExtractionError, OrchestratorError
from torchpool.core.process_pool import ProcessPool

UPPERCASE_RENDER = [sys.executable, "-c", "import sys; sys.stdout.write(open(sys.argv[1]).read().upper())", "{file}"]
PICKY_RENDER = [
    sys.executable,
    "-c",
    "import sys; p = sys.argv[1]; sys.exit(4) if 'bad' in p else sys.stdout.write('<svg/>')",
    "{file}",
]


def _with_pool(folder, settings, body):
    async def scenario():
        pool = ProcessPool(folder.root, settings)
        await pool.start()
        try:
            return await body(TrainingController(pool, folder))
        finally:
            await pool.stop()

    return asyncio.run(scenario())


def test_save_then_load_round_trips_on_fresh_pool(folder, make_settings, received):
    async def body(controller):
        with await controller.save_model() as stream:
            checkpoint = json.loads(stream.read())
        await controller.load_model()
        return checkpoint

    assert _with_pool(folder, make_settings(worker_count=2), body) == {"iterations": 0}
    assert received(1, "save") and received(2, "save") == []
    assert len(received(1, "load")) == 1 and len(received(2, "load")) == 1


def test_custom_checkpoint_name_missing_after_save(folder, make_settings):
    async def body(controller):
        with pytest.raises(OrchestratorError):
            await controller.save_model()

    _with_pool(folder, make_settings(checkpoint_filename="weights.bin"), body)


def test_statistics_come_from_worker_zero(folder, make_settings):
    async def body(controller):
        return await controller.get_statistics()

    stats = _with_pool(folder, make_settings(worker_count=2), body)
    assert stats == {"worker": 1, "stored": [], "iterations": 0}


def test_prepare_batch_writes_file_via_worker_zero(folder, make_settings, received):
    async def body(controller):
        reply = await controller.prepare_batch(["a", "b"], "batch-7.json")
        return reply.type

    assert _with_pool(folder, make_settings(worker_count=2), body) == "batchPrepared"
    assert json.loads(folder.path("batch-7.json").read_text()) == ["a", "b"]
    assert received(1, "prepareBatch")[0]["fileName"] == "batch-7.json"
    assert received(2, "prepareBatch") == []


def test_diagram_extraction_gives_up_after_retry_budget(folder, make_settings):
    settings = make_settings(diagram_attempts=5, diagram_delay_s=0.05)
    controller = TrainingController(None, folder, settings)
    started = time.monotonic()
    with pytest.raises(DiagramExtractionError):
        asyncio.run(controller.extract_diagrams())
    elapsed = time.monotonic() - started
    assert 0.2 <= elapsed < 5.0


def test_diagrams_are_rendered_and_base64_encoded(folder, make_settings):
    folder.path("b_net.dot").write_text("digraph b {}")
    folder.path("a_net.dot").write_text("digraph a {}")
    folder.path("notes.txt").write_text("ignored")
    controller = TrainingController(None, folder, make_settings(render_command=UPPERCASE_RENDER))
    results = asyncio.run(controller.extract_diagrams())
    assert [r.file for r in results] == ["a_net.dot", "b_net.dot"]
    assert all(r.ok for r in results)
    assert base64.b64decode(results[0].data) == b"DIGRAPH A {}"
    assert results[0].to_dict() == {"file": "a_net.dot", "data": results[0].data}


def test_diagrams_written_later_are_picked_up(folder, make_settings):
    settings = make_settings(render_command=UPPERCASE_RENDER, diagram_attempts=50, diagram_delay_s=0.02)

    async def scenario():
        async def write_later():
            await asyncio.sleep(0.1)
            folder.path("late.dot").write_text("x")

        writer = asyncio.create_task(write_later())
        results = await TrainingController(None, folder, settings).extract_diagrams()
        await writer
        return results

    results = asyncio.run(scenario())
    assert [r.file for r in results] == ["late.dot"]


def test_one_failed_render_does_not_abort_the_others(folder, make_settings):
    folder.path("good.dot").write_text("digraph {}")
    folder.path("bad.dot").write_text("digraph {")
    controller = TrainingController(None, folder, make_settings(render_command=PICKY_RENDER))
    results = {r.file: r for r in asyncio.run(controller.extract_diagrams())}
    assert results["good.dot"].ok
    assert base64.b64decode(results["good.dot"].data) == b"<svg/>"
    assert not results["bad.dot"].ok
    assert "exited with 4" in results["bad.dot"].error
    assert "data" not in results["bad.dot"].to_dict()


def test_render_output_cap(folder, make_settings):
    folder.path("big.dot").write_text("y" * 1000)
    settings = make_settings(render_command=UPPERCASE_RENDER, render_max_bytes=100)
    results = asyncio.run(TrainingController(None, folder, settings).extract_diagrams())
    assert "exceeds 100 bytes" in results[0].error


def test_missing_render_program(folder, make_settings):
    folder.path("a.dot").write_text("digraph {}")
    settings = make_settings(render_command=["/nonexistent/dot", "{file}"])
    results = asyncio.run(TrainingController(None, folder, settings).extract_diagrams())
    assert "cannot run" in results[0].error


def test_worker_operations_need_a_pool(folder, make_settings):
    controller = TrainingController(None, folder, make_settings())
    with pytest.raises(OrchestratorError):
        asyncio.run(controller.get_statistics())
    with pytest.raises(OrchestratorError):
        asyncio.run(controller.load_model())

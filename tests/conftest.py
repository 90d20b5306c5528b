import json
import sys
from pathlib import Path

import pytest

from torchpool.core.config_loader import PoolSettings
from torchpool.core.script_folder import ScriptFolder

FAKE_WORKER = Path(__file__).resolve().parent / "fake_worker.py"


@pytest.fixture
def folder(tmp_path: Path) -> ScriptFolder:
    root = tmp_path / "scripts"
    root.mkdir()
    return ScriptFolder(root)


@pytest.fixture
def make_settings():
    def _make(mode: str = "", no_request_id: bool = False, **kwargs) -> PoolSettings:
        env = {"FAKE_WORKER_MODE": mode}
        if no_request_id:
            env["FAKE_WORKER_NO_REQUEST_ID"] = "1"
        kwargs.setdefault("exchange_timeout_s", 10.0)
        return PoolSettings(
            worker_command=[sys.executable, str(FAKE_WORKER), "{index}", "{count}"],
            worker_env=env,
            **kwargs,
        )

    return _make


@pytest.fixture
def received(folder: ScriptFolder):
    """Requests a fake worker (1-based number) has seen, in arrival order."""

    def _read(worker_number: int, msg_type: str = None):
        path = folder.root / f"received-{worker_number}.jsonl"
        if not path.exists():
            return []
        msgs = [json.loads(line) for line in path.read_text().splitlines() if line]
        if msg_type is not None:
            msgs = [m for m in msgs if m["type"] == msg_type]
        return msgs

    return _read

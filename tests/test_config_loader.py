from pathlib import Path

import pytest

from torchpool.core.config_loader import ConfigError, PoolSettings, load_settings


def test_defaults_match_reference_values():
    s = load_settings(environ={})
    assert s.worker_count == 1
    assert s.diagram_attempts == 100
    assert s.diagram_delay_s == 0.15
    assert s.render_max_bytes == 10 * 1024 * 1024
    assert s.checkpoint_filename == "model.t7"
    assert s.worker_argv(0, 2) == ["luajit", "TrainingScript.lua", "1", "2"]
    assert s.render_argv(Path("/tmp/x.dot")) == ["dot", "-Grankdir=LR", "/tmp/x.dot", "-Tsvg"]


def test_yaml_file_and_env_and_overrides(tmp_path: Path):
    cfg = tmp_path / "pool.yaml"
    cfg.write_text(
        """
worker_count: 2
exchange_timeout_s: 30
library_dirs: [lib/lua]
parallel_broadcast: false
"""
    )
    s = load_settings(cfg, environ={})
    assert (s.worker_count, s.exchange_timeout_s, s.parallel_broadcast) == (2, 30.0, False)
    assert s.library_dirs == ["lib/lua"]

    env = {"TORCHPOOL_WORKER_COUNT": "4", "TORCHPOOL_WORKER_COMMAND": "python worker.py {index}"}
    s = load_settings(cfg, environ=env)
    assert s.worker_count == 4
    assert s.worker_argv(2, 4) == ["python", "worker.py", "3"]

    s = load_settings(cfg, environ=env, worker_count=6, diagram_attempts=None)
    assert s.worker_count == 6
    assert s.diagram_attempts == 100


def test_env_can_disable_exchange_timeout():
    assert load_settings(environ={"TORCHPOOL_EXCHANGE_TIMEOUT_S": "none"}).exchange_timeout_s is None
    assert load_settings(environ={"TORCHPOOL_EXCHANGE_TIMEOUT_S": "2.5"}).exchange_timeout_s == 2.5


@pytest.mark.parametrize(
    "text",
    ["worker_count: 0\n", "diagram_attempts: -1\n", "unknown_key: 1\n", "worker_command: []\n", "- just a list\n"],
)
def test_invalid_settings(tmp_path: Path, text):
    cfg = tmp_path / "pool.yaml"
    cfg.write_text(text)
    with pytest.raises(ConfigError):
        load_settings(cfg, environ={})


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.yaml", environ={})


def test_settings_model_direct():
    s = PoolSettings(worker_count=3, render_command=["dot", "-Tpng", "{file}"])
    assert s.render_argv("g.dot") == ["dot", "-Tpng", "g.dot"]

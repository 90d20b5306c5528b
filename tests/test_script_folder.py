from types import SimpleNamespace

import pytest

from torchpool.core.errors import ScriptFolderError
from torchpool.core.script_folder import ScriptFolder


def test_create_and_cleanup(tmp_path):
    folder = ScriptFolder.create(base_dir=tmp_path)
    assert folder.exists()
    assert folder.root.name.startswith("torchpool-model-")
    assert ScriptFolder.create(base_dir=tmp_path).root != folder.root
    folder.cleanup()
    assert not folder.exists()


def test_write_generated_files_verbatim(folder):
    records = [
        {"path": "TrainingScript.lua", "data": "require 'nn'\n"},
        {"path": "components/word.lua", "data": b"\x00\x01binary"},
        SimpleNamespace(path="config.json", data='{"batch": 16}'),
    ]
    assert folder.write_files(records) == 3
    assert folder.path("TrainingScript.lua").read_text() == "require 'nn'\n"
    assert folder.path("components/word.lua").read_bytes() == b"\x00\x01binary"
    assert folder.path("config.json").read_text() == '{"batch": 16}'


@pytest.mark.parametrize(
    "record",
    [
        {"path": "../outside.lua", "data": "x"},
        {"path": "a.lua"},
        {"path": "a.lua", "data": 42},
        {"data": "x"},
    ],
)
def test_bad_records_are_rejected(folder, record):
    with pytest.raises(ScriptFolderError):
        folder.write_files([record])


def test_copy_library_files(folder, tmp_path):
    lib = tmp_path / "lib"
    lib.mkdir()
    (lib / "json.lua").write_text("-- json")
    (lib / "util.lua").write_text("-- util")
    (lib / "nested").mkdir()
    assert folder.copy_library_files([lib]) == 2
    assert folder.path("util.lua").read_text() == "-- util"
    with pytest.raises(ScriptFolderError):
        folder.copy_library_files([tmp_path / "missing"])


def test_diagram_files_filtered_and_sorted(folder):
    for name in ("z.dot", "a.dot", "model.t7", "b.dot.tmp"):
        folder.path(name).write_text("")
    assert [p.name for p in folder.diagram_files()] == ["a.dot", "z.dot"]

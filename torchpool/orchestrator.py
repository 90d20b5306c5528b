"""TrainingOrchestrator: code generation output -> worker pool -> training operations.

Typical use::

    async with TrainingOrchestrator(architecture.generate_files, settings) as orch:
        await orch.load_object("a", input_a, output_a)
        results = await orch.process_objects(["a"])
        stream = await orch.get_model_file_stream()

The code generator is any callable returning ``{path, data}`` file records;
they are written verbatim into a fresh script folder together with the
configured support library files before the workers start.
"""
from __future__ import annotations

from typing import Any, BinaryIO, Callable, Dict, Hashable, Iterable, List, Optional, Sequence

from .core.config_loader import PoolSettings
from .core.controller import DiagramResult, TrainingController
from .core.dispatcher import BatchDispatcher
from .core.errors import OrchestratorError
from .core.logging import core_logger
from .core.process_pool import ProcessPool
from .core.residency import ResidencySet, ResidencyTracker
from .core.script_folder import ScriptFolder
from .core.worker_protocol import Message

CodeGenerator = Callable[[], Iterable[Any]]


class TrainingOrchestrator:
    def __init__(
        self,
        code_generator: CodeGenerator,
        settings: Optional[PoolSettings] = None,
        script_folder: Optional[ScriptFolder] = None,
    ):
        self.code_generator = code_generator
        self.settings = settings or PoolSettings()
        self.script_folder = script_folder
        self.pool: Optional[ProcessPool] = None
        self.residency = ResidencySet()
        self._tracker: Optional[ResidencyTracker] = None
        self._dispatcher: Optional[BatchDispatcher] = None
        self._controller: Optional[TrainingController] = None

    # ------------------------------------------------------------------
    # lifecycle
    def generate_code(self) -> int:
        """Write generated and library files into the script folder; returns the file count."""
        if self.script_folder is None:
            self.script_folder = ScriptFolder.create()
        total = self.script_folder.write_files(self.code_generator())
        total += self.script_folder.copy_library_files(self.settings.library_dirs)
        core_logger.info(f"wrote {total} file(s) to {self.script_folder.root}")
        return total

    async def start(self, worker_count: Optional[int] = None):
        if self.script_folder is None:
            raise OrchestratorError("generate_code() must run before start()")
        pool = ProcessPool(self.script_folder.root, self.settings)
        await pool.start(worker_count)
        self.pool = pool
        self._tracker = ResidencyTracker(pool, self.residency)
        self._dispatcher = BatchDispatcher(pool)
        self._controller = TrainingController(pool, self.script_folder, self.settings)

    async def stop(self):
        if self.pool is not None:
            await self.pool.stop()
            self.pool = None
        self.residency.clear()

    async def close(self):
        await self.stop()
        if self.script_folder is not None and not self.settings.keep_script_folder:
            self.script_folder.cleanup()

    async def __aenter__(self) -> "TrainingOrchestrator":
        try:
            self.generate_code()
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _require(self, component):
        if component is None or self.pool is None:
            raise OrchestratorError("orchestrator is not started")
        return component

    # ------------------------------------------------------------------
    # operations
    @property
    def loaded_ids(self) -> List[Hashable]:
        return self.residency.ids()

    async def reset(self):
        await self._require(self.pool).reset()

    async def load_object(self, object_id: Hashable, input: Any, output: Any):
        await self._require(self._tracker).load(object_id, input, output)

    async def remove_object(self, object_id: Hashable):
        await self._require(self._tracker).unload(object_id)

    async def process_objects(self, ids: Sequence[Hashable]) -> List[Dict[str, Any]]:
        return await self._require(self._dispatcher).evaluate(ids)

    async def process_batch(self, batch_filename: str) -> List[Dict[str, Any]]:
        return await self._require(self._dispatcher).evaluate_batch(batch_filename)

    async def execute_training_iteration(self, batch_filename: str) -> Message:
        return await self._require(self._dispatcher).execute_training_iteration(batch_filename)

    async def prepare_batch(self, ids: Sequence[Hashable], filename: str) -> Message:
        return await self._require(self._controller).prepare_batch(ids, filename)

    async def get_model_file_stream(self) -> BinaryIO:
        return await self._require(self._controller).save_model()

    async def load_model_file(self):
        await self._require(self._controller).load_model()

    async def get_internal_statistics(self) -> Any:
        return await self._require(self._controller).get_statistics()

    async def extract_network_diagrams(self) -> List[DiagramResult]:
        if self._controller is None:
            if self.script_folder is None:
                raise OrchestratorError("no script folder to search for diagrams")
            return await TrainingController(None, self.script_folder, self.settings).extract_diagrams()
        return await self._controller.extract_diagrams()


__all__ = ["TrainingOrchestrator", "CodeGenerator"]

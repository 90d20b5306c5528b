"""torchpool: orchestrates external training worker processes over a JSON-line stdio protocol."""

from .core.config_loader import PoolSettings, load_settings
from .core.controller import DiagramResult
from .core.errors import OrchestratorError
from .orchestrator import TrainingOrchestrator

__version__ = "0.1.0"

__all__ = [
    "TrainingOrchestrator",
    "PoolSettings",
    "load_settings",
    "DiagramResult",
    "OrchestratorError",
]

"""Core components of the training-process orchestrator.

Modules:
  config_loader: PoolSettings loaded from YAML and TORCHPOOL_* env vars.
  worker_protocol: message type tags and the Message record.
  channel: correlated request/reply exchanges over one worker's stdio.
  worker: a spawned worker process plus its channel.
  process_pool: spawn / handshake / broadcast / stop a fixed set of workers.
  residency: which object ids are loaded on every worker.
  dispatcher: round-robin evaluation and worker-0 batch operations.
  controller: checkpoint, statistics, batch preparation and diagram rendering.
  script_folder: the working directory holding generated code and artifacts.
"""

from .process_pool import ProcessPool  # noqa: F401

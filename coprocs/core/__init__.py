"""Core framework components for coprocs.

Modules:
  errors: Exception taxonomy (spawn, channel, protocol, process, lifecycle).
  logging: Logger factory (env-driven level, optional log file on disk).
  config_loader: Parse YAML config into normalized constructor parameters.
  worker_protocol: Line protocol constants, verb enums and command parsing.
  channel: Line channel over a worker's stdin/stdout pipes.
  process_manager: Spawn, talk to and reap worker subprocesses.
  worker_entry: ``python -m`` entrypoint that runs one worker kind.
"""

from .process_manager import ProcessManager  # noqa: F401

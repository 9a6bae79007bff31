"""
# Executor — Lattice CI

Fronteira com os backends de execução.

- **base**: `ExecutionRequest`, `ExecutionOutcome`, `ExecutorAdapter`, `ExecutorPool`
- **shell**: `ShellExecutor` (subprocess local)
"""

from .base import ExecutionOutcome, ExecutionRequest, ExecutorAdapter, ExecutorPool, tags_satisfied
from .shell import ShellExecutor

__all__ = [
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutorAdapter",
    "ExecutorPool",
    "ShellExecutor",
    "tags_satisfied",
]

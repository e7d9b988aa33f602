"""Workers package.

Workers serve agent kinds: the hub routes each task to the worker
registered for the task's kind.
"""

from .base import (
    BaseWorker,
    EchoWorker,
    FunctionWorker,
    WorkerContext,
    WorkerHandler,
)

__all__ = [
    "BaseWorker",
    "EchoWorker",
    "FunctionWorker",
    "WorkerContext",
    "WorkerHandler",
]

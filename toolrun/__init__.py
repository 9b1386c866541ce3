"""Bounded external-tool execution with a per-user result history."""

from toolrun.artifacts import ArtifactPipeline
from toolrun.errors import (
    FetchError,
    HistoryPersistError,
    InvalidArgument,
    SpawnError,
    ToolError,
    ToolRunError,
    ToolTimeout,
    UnknownOutputFormat,
    UnresolvedReference,
    UnsupportedInputType,
    WorkspaceError,
)
from toolrun.history import ResultHistoryStore
from toolrun.kvstore import KeyValueStore
from toolrun.models import ExecutionRequest, ExecutionResult, InputSource
from toolrun.process import Completed, TimedOut, TimedProcessRunner
from toolrun.ring import RingBuffer
from toolrun.workspace import ScratchWorkspace

__all__ = [
    "ArtifactPipeline",
    "Completed",
    "ExecutionRequest",
    "ExecutionResult",
    "FetchError",
    "HistoryPersistError",
    "InputSource",
    "InvalidArgument",
    "KeyValueStore",
    "ResultHistoryStore",
    "RingBuffer",
    "ScratchWorkspace",
    "SpawnError",
    "TimedOut",
    "TimedProcessRunner",
    "ToolError",
    "ToolRunError",
    "ToolTimeout",
    "UnknownOutputFormat",
    "UnresolvedReference",
    "UnsupportedInputType",
    "WorkspaceError",
]

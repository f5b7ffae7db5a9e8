"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
ilastik_bridge.core.config.
"""

from ilastik_bridge.contracts.codec import INPUT_DATASET_KEY, OUTPUT_DATASET_KEY, DatasetCodec
from ilastik_bridge.contracts.enums import (
    InvocationMode,
    InvocationState,
    InvocationStatus,
    OutputStream,
    SecondaryInputKind,
    TempFileRole,
)
from ilastik_bridge.contracts.errors import (
    CancellationWarning,
    ConfigurationError,
    InvocationError,
    ProcessExecutionError,
    ProcessLaunchError,
    ResultLoadError,
    SerializationError,
    TempFileCreationError,
)
from ilastik_bridge.contracts.events import InvocationCompleted, StateChanged
from ilastik_bridge.contracts.results import (
    AXIS_ORDER,
    ImageData,
    InvocationRequest,
    InvocationResult,
    ProcessOutcome,
    TemporaryFile,
)

__all__ = [
    "AXIS_ORDER",
    "INPUT_DATASET_KEY",
    "OUTPUT_DATASET_KEY",
    "CancellationWarning",
    "ConfigurationError",
    "DatasetCodec",
    "ImageData",
    "InvocationCompleted",
    "InvocationError",
    "InvocationMode",
    "InvocationRequest",
    "InvocationResult",
    "InvocationState",
    "InvocationStatus",
    "OutputStream",
    "ProcessExecutionError",
    "ProcessLaunchError",
    "ProcessOutcome",
    "ResultLoadError",
    "SecondaryInputKind",
    "SerializationError",
    "StateChanged",
    "TempFileCreationError",
    "TempFileRole",
    "TemporaryFile",
]

"""Status codes, modes, and kinds used across subsystem boundaries."""

from enum import StrEnum


class SecondaryInputKind(StrEnum):
    """What the second dataset handed to the engine contains.

    Selects both the compression level used when it is written and the
    command-line flag that carries it.
    """

    PROBABILITIES = "probabilities"
    SEGMENTATION = "segmentation"


class InvocationMode(StrEnum):
    """Whether an invocation runs the engine or only writes its inputs.

    Values:
        PREDICT_AND_LOAD: Write inputs, run the engine, load the result
        SAVE_ONLY: Write inputs and keep them for offline training
    """

    PREDICT_AND_LOAD = "predict_and_load"
    SAVE_ONLY = "save_only"


class TempFileRole(StrEnum):
    """Role of a scratch file within one invocation."""

    RAW = "raw"
    SECONDARY = "secondary"
    OUTPUT = "output"


class InvocationState(StrEnum):
    """Lifecycle states of a single invocation.

    Every invocation starts in IDLE and ends in DONE.
    """

    IDLE = "idle"
    CONFIGURING = "configuring"
    SERIALIZING_INPUTS = "serializing_inputs"
    SAVE_ONLY_DONE = "save_only_done"
    INVOKING = "invoking"
    AWAITING_EXIT = "awaiting_exit"
    LOADING_RESULT = "loading_result"
    FAILED = "failed"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


class InvocationStatus(StrEnum):
    """Final outcome of an invocation."""

    SUCCEEDED = "succeeded"
    SAVED = "saved"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OutputStream(StrEnum):
    """Engine output stream a captured line came from."""

    STDOUT = "stdout"
    STDERR = "stderr"

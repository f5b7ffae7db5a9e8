"""Error taxonomy for engine invocations.

Every failure an invocation can run into has its own type so that callers
can tell the stages apart. The orchestrator catches all of them at its
boundary and records the instance on the InvocationResult; none of them
escape to the host.
"""

from pathlib import Path

from ilastik_bridge.contracts.enums import InvocationState, TempFileRole


class InvocationError(Exception):
    """Base class for failures of a single engine invocation.

    Attributes:
        stage: Lifecycle state in which the failure happened
    """

    stage: InvocationState = InvocationState.IDLE


class ConfigurationError(InvocationError):
    """Engine location is unset or does not point at an executable.

    Raised before any temporary file is allocated.
    """

    stage = InvocationState.CONFIGURING


class TempFileCreationError(InvocationError):
    """A scratch file for the given role could not be allocated.

    Attributes:
        role: Which scratch file failed (raw, secondary, output)
    """

    stage = InvocationState.SERIALIZING_INPUTS

    def __init__(self, role: TempFileRole, reason: str) -> None:
        self.role = role
        super().__init__(f"Could not create a temporary {role.value} file: {reason}")


class SerializationError(InvocationError):
    """Writing an input dataset to its exchange file failed."""

    stage = InvocationState.SERIALIZING_INPUTS

    def __init__(self, role: TempFileRole, path: Path) -> None:
        self.role = role
        self.path = path
        super().__init__(f"Could not write {role.value} input to {path}")


class ProcessLaunchError(InvocationError):
    """The engine process could not be started.

    Typically a missing executable or a permission problem.
    """

    stage = InvocationState.INVOKING

    def __init__(self, executable: str, reason: str) -> None:
        self.executable = executable
        super().__init__(f"Could not launch {executable}: {reason}")


class ProcessExecutionError(InvocationError):
    """The engine exited with a nonzero status.

    This is an expected failure (bad project file, incompatible inputs);
    the user can fix the inputs and retry.

    Attributes:
        exit_code: Exit status reported by the engine
    """

    stage = InvocationState.AWAITING_EXIT

    def __init__(self, exit_code: int) -> None:
        self.exit_code = exit_code
        super().__init__(f"Engine exited with status {exit_code}")


class ResultLoadError(InvocationError):
    """The engine reported success but its output could not be read.

    Points at an environment or format mismatch, so it is never retried.
    """

    stage = InvocationState.LOADING_RESULT

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Could not read engine output from {path}")


class CancellationWarning(InvocationError):
    """The invocation was cancelled.

    Usually the engine was terminated while running. A cancellation that
    arrives before launch stops the invocation without starting the engine,
    and then there is no exit status. Recorded on the result and logged as
    a warning. It is never raised to the caller.

    Attributes:
        exit_code: Exit status of the terminated process, None if the
            engine was never started
    """

    stage = InvocationState.AWAITING_EXIT

    def __init__(self, exit_code: int | None = None) -> None:
        self.exit_code = exit_code
        if exit_code is None:
            self.stage = InvocationState.INVOKING
            super().__init__("Engine execution was cancelled before it started")
        else:
            super().__init__(f"Engine execution was cancelled (exit status {exit_code})")

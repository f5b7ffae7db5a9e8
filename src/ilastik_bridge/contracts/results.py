"""Value types passed between the orchestrator and its collaborators.

These types define the interface for a single invocation:
- ImageData: An array plus the meaning of each of its axes
- TemporaryFile: A scratch path and the role it plays
- ProcessOutcome: How the engine process ended
- InvocationRequest: Everything the caller supplies for one run
- InvocationResult: Everything the caller gets back
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from ilastik_bridge.contracts.enums import (
    InvocationMode,
    InvocationState,
    InvocationStatus,
    SecondaryInputKind,
    TempFileRole,
)
from ilastik_bridge.contracts.errors import InvocationError

# Axis order the engine expects on input and produces on output.
AXIS_ORDER = "tzyxc"


@dataclass(frozen=True, slots=True)
class ImageData:
    """A host array with one axis letter per dimension.

    Axis letters are drawn from "tzyxc" (time, depth, height, width,
    channel). The element type is whatever numpy dtype the array carries.
    """

    array: np.ndarray
    axes: str = AXIS_ORDER

    def __post_init__(self) -> None:
        if len(self.axes) != self.array.ndim:
            raise ValueError(f"axes {self.axes!r} do not match array with {self.array.ndim} dimensions")
        unknown = set(self.axes) - set(AXIS_ORDER)
        if unknown:
            raise ValueError(f"unknown axis letters {sorted(unknown)} in {self.axes!r}")
        if len(set(self.axes)) != len(self.axes):
            raise ValueError(f"duplicate axis letters in {self.axes!r}")


@dataclass(frozen=True, slots=True)
class TemporaryFile:
    """A scratch file exclusively owned by one invocation."""

    path: Path
    role: TempFileRole


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    """How the engine process ended."""

    exit_code: int
    terminated_by_cancellation: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.terminated_by_cancellation


@dataclass(frozen=True, slots=True)
class InvocationRequest:
    """Inputs for one engine invocation.

    Attributes:
        raw: Raw image data
        secondary: Probability maps or label segmentation for the raw data
        secondary_kind: Which of the two the secondary dataset is
        project_file: Trained ilastik project
        mode: Run the engine or only write the inputs
    """

    raw: ImageData
    secondary: ImageData
    secondary_kind: SecondaryInputKind
    project_file: Path
    mode: InvocationMode = InvocationMode.PREDICT_AND_LOAD


@dataclass
class InvocationResult:
    """Outcome of one engine invocation.

    Attributes:
        invocation_id: Unique id of the invocation (also bound in its logs)
        status: Final status
        states: Every lifecycle state visited, in order
        result: Loaded engine output (SUCCEEDED only)
        error: Typed failure, or CancellationWarning when cancelled
        outcome: How the engine process ended, when it was run
        retained_files: Input files kept on disk (SAVE_ONLY only)
        command: Command line that was run, when one was built
    """

    invocation_id: str
    status: InvocationStatus
    states: list[InvocationState] = field(default_factory=list)
    result: ImageData | None = None
    error: InvocationError | None = None
    outcome: ProcessOutcome | None = None
    retained_files: list[TemporaryFile] = field(default_factory=list)
    command: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether the invocation did what was asked of it."""
        return self.status in (InvocationStatus.SUCCEEDED, InvocationStatus.SAVED)

    @property
    def final_state(self) -> InvocationState:
        return self.states[-1]

    @property
    def message(self) -> str:
        """One-line report suitable for showing to a user."""
        if self.error is not None:
            return str(self.error)
        if self.status == InvocationStatus.SAVED:
            paths = ", ".join(str(f.path) for f in self.retained_files)
            return f"Saved inputs for training to {paths}"
        return "ilastik finished successfully"

# src/ilastik_bridge/engine/command.py
"""Engine command-line construction.

Pure functions: given the exchange file paths and the kind of secondary
input, produce the exact argument list for a headless object
classification run. No I/O happens here.
"""

from dataclasses import dataclass
from pathlib import Path

from ilastik_bridge.contracts.enums import SecondaryInputKind
from ilastik_bridge.contracts.results import AXIS_ORDER

# Probability maps don't compress usefully, label images do.
_COMPRESSION_LEVELS: dict[SecondaryInputKind, int] = {
    SecondaryInputKind.PROBABILITIES: 0,
    SecondaryInputKind.SEGMENTATION: 9,
}

_SECONDARY_FLAGS: dict[SecondaryInputKind, str] = {
    SecondaryInputKind.PROBABILITIES: "--prediction_maps",
    SecondaryInputKind.SEGMENTATION: "--segmentation_image",
}


def compression_level_for(kind: SecondaryInputKind) -> int:
    """Compression level for writing a secondary dataset of this kind."""
    return _COMPRESSION_LEVELS[kind]


def secondary_flag_for(kind: SecondaryInputKind) -> str:
    """Command-line flag that carries a secondary dataset of this kind."""
    return _SECONDARY_FLAGS[kind]


@dataclass(frozen=True, slots=True)
class InvocationSpec:
    """Everything needed to run the engine once.

    Attributes:
        executable_path: Engine launcher
        project_file: Trained project (absolute)
        raw_path: Exchange file with the raw data
        secondary_path: Exchange file with probabilities or segmentation
        secondary_kind: Which of the two secondary_path holds
        output_path: Where the engine writes its result
        output_format: Engine container format
        axis_order: Axis order of the engine's output
    """

    executable_path: Path
    project_file: Path
    raw_path: Path
    secondary_path: Path
    secondary_kind: SecondaryInputKind
    output_path: Path
    output_format: str = "hdf5"
    axis_order: str = AXIS_ORDER

    @property
    def compression_level(self) -> int:
        return compression_level_for(self.secondary_kind)

    def arguments(self) -> list[str]:
        """Engine arguments, in a stable order."""
        return [
            "--headless",
            f"--project={self.project_file}",
            f"--output_filename_format={self.output_path}",
            f"--output_format={self.output_format}",
            f"--output_axis_order={self.axis_order}",
            f"--raw_data={self.raw_path}",
            f"{secondary_flag_for(self.secondary_kind)}={self.secondary_path}",
        ]

    def command_line(self) -> list[str]:
        """Executable followed by its arguments."""
        return [str(self.executable_path), *self.arguments()]


def build_invocation(
    executable_path: Path,
    project_file: Path,
    raw_path: Path,
    secondary_path: Path,
    secondary_kind: SecondaryInputKind,
    output_path: Path,
    output_format: str = "hdf5",
) -> InvocationSpec:
    """Build the InvocationSpec for one engine run."""
    return InvocationSpec(
        executable_path=executable_path,
        project_file=project_file.absolute(),
        raw_path=raw_path,
        secondary_path=secondary_path,
        secondary_kind=secondary_kind,
        output_path=output_path,
        output_format=output_format,
    )

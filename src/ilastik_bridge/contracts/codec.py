"""Dataset codec protocol.

The codec turns arrays into exchange files and back. It is an external
collaborator: the orchestrator only ever calls these two methods.
"""

from pathlib import Path
from typing import Protocol, runtime_checkable

from ilastik_bridge.contracts.results import ImageData

# Dataset keys inside exchange files.
INPUT_DATASET_KEY = "data"
OUTPUT_DATASET_KEY = "exported_data"


@runtime_checkable
class DatasetCodec(Protocol):
    """Protocol for reading and writing exchange files."""

    def write(self, image: ImageData, path: Path, key: str, compression_level: int) -> None:
        """Write image under key, compressed at compression_level (0-9)."""
        ...

    def read(self, path: Path, key: str, axis_order: str) -> ImageData:
        """Read the dataset under key, returned in axis_order."""
        ...

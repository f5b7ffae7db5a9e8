# src/ilastik_bridge/engine/loader.py
"""Loading the engine's output back into host form."""

from pathlib import Path

import structlog

from ilastik_bridge.contracts.codec import OUTPUT_DATASET_KEY, DatasetCodec
from ilastik_bridge.contracts.errors import ResultLoadError
from ilastik_bridge.contracts.results import AXIS_ORDER, ImageData

logger = structlog.get_logger(__name__)


class ResultLoader:
    """Reads the engine's result through the dataset codec.

    Only used after the engine exited with status 0. A read failure at
    that point means an environment or format mismatch, so there is no
    retry.
    """

    def __init__(self, codec: DatasetCodec, key: str = OUTPUT_DATASET_KEY, axis_order: str = AXIS_ORDER) -> None:
        self._codec = codec
        self._key = key
        self._axis_order = axis_order

    def load(self, output_path: Path) -> ImageData:
        """Read the result array from output_path.

        Raises:
            ResultLoadError: If the codec cannot read the file
        """
        logger.info("Reading resulting segmentation", path=str(output_path))
        try:
            image = self._codec.read(output_path, self._key, self._axis_order)
        except Exception as e:
            logger.error("Could not read engine output", path=str(output_path), error=str(e))
            raise ResultLoadError(output_path) from e
        logger.debug("Loaded engine output", shape=image.array.shape, dtype=str(image.array.dtype))
        return image

# src/ilastik_bridge/core/codec.py
"""HDF5 exchange files via h5py.

Arrays are stored in the engine's fixed "tzyxc" order under a dataset key,
with the axis order recorded as an `axistags` attribute in the JSON layout
ilastik itself writes and reads.
"""

import json
from pathlib import Path

import h5py
import numpy as np

from ilastik_bridge.contracts.results import AXIS_ORDER, ImageData

__all__ = ["Hdf5DatasetCodec", "conform_axes"]

# vigra AxisType flags, as found in ilastik's axistags
_TYPE_FLAGS = {"c": 1, "x": 2, "y": 2, "z": 2, "t": 8}


def conform_axes(array: np.ndarray, source: str, target: str) -> np.ndarray:
    """Reorder array from source axis order to target axis order.

    Axes missing from source become singleton dimensions. Axes of source
    that target does not have are dropped if they are singletons.

    Raises:
        ValueError: If a non-singleton axis would have to be dropped
    """
    for axis in [a for a in source if a not in target]:
        index = source.index(axis)
        if array.shape[index] != 1:
            raise ValueError(f"cannot drop axis {axis!r} of size {array.shape[index]} when converting {source!r} to {target!r}")
        array = np.squeeze(array, axis=index)
        source = source.replace(axis, "")

    missing = "".join(a for a in target if a not in source)
    array = array.reshape(array.shape + (1,) * len(missing))
    source += missing
    return np.transpose(array, [source.index(a) for a in target])


def _axistags_json(axes: str) -> str:
    return json.dumps({"axes": [{"key": a, "typeFlags": _TYPE_FLAGS[a], "resolution": 0, "description": ""} for a in axes]})


def _axes_from_axistags(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return "".join(entry["key"] for entry in json.loads(raw)["axes"])


class Hdf5DatasetCodec:
    """Dataset codec backed by h5py."""

    def __init__(self, axis_order: str = AXIS_ORDER) -> None:
        self.axis_order = axis_order

    def write(self, image: ImageData, path: Path, key: str, compression_level: int) -> None:
        """Write image to path under key in the codec's axis order.

        Args:
            image: Array and its axes
            path: Target file (created or truncated)
            key: Dataset name inside the file
            compression_level: gzip level 0-9, 0 disables compression
        """
        if not 0 <= compression_level <= 9:
            raise ValueError(f"compression_level must be between 0 and 9, got {compression_level}")
        data = conform_axes(image.array, image.axes, self.axis_order)

        options: dict[str, object] = {}
        if compression_level > 0:
            options = {"compression": "gzip", "compression_opts": compression_level}

        with h5py.File(path, "w") as f:
            dataset = f.create_dataset(key, data=data, chunks=True, **options)
            dataset.attrs["axistags"] = _axistags_json(self.axis_order)

    def read(self, path: Path, key: str, axis_order: str, *, stored_axes: str | None = None) -> ImageData:
        """Read the dataset under key and return it in axis_order.

        The stored order comes from the `axistags` attribute. Plain HDF5
        files have none, and then stored_axes describes the data (default:
        the data is already in axis_order).

        Raises:
            KeyError: If key is not in the file
            ValueError: If the stored axes cannot be converted
        """
        with h5py.File(path, "r") as f:
            dataset = f[key]
            data = dataset[()]
            stored = dataset.attrs.get("axistags")

        if stored is not None:
            source = _axes_from_axistags(stored)
        else:
            source = stored_axes if stored_axes is not None else axis_order
        if len(source) != data.ndim:
            raise ValueError(f"dataset {key!r} has {data.ndim} dimensions but axes {source!r}")
        return ImageData(conform_axes(data, source, axis_order), axis_order)

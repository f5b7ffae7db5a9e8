# src/ilastik_bridge/core/tempfiles.py
"""
Scratch files for exchanging datasets with the engine.

Every invocation gets its own uniquely named files inside a shared scratch
directory. Names carry a uuid4, so concurrent invocations in the same
process or on the same host never share a path.

Structure: scratch_dir/ilastik_bridge_<uuid hex>_<role>.h5
"""

import tempfile
import threading
import uuid
from pathlib import Path
from types import TracebackType

import structlog

from ilastik_bridge.contracts.enums import TempFileRole
from ilastik_bridge.contracts.errors import TempFileCreationError
from ilastik_bridge.contracts.results import TemporaryFile

__all__ = ["TempFileManager", "TempFileSet"]

logger = structlog.get_logger(__name__)

_DEFAULT_SUFFIXES: dict[TempFileRole, str] = {
    TempFileRole.RAW: "_raw.h5",
    TempFileRole.SECONDARY: "_secondary.h5",
    TempFileRole.OUTPUT: "_output.h5",
}


class TempFileManager:
    """Allocates and deletes scratch files.

    Allocation only reserves a name; the codec and the engine create the
    files themselves.
    """

    def __init__(self, scratch_dir: Path | None = None, prefix: str = "ilastik_bridge_") -> None:
        """Initialize the manager.

        Args:
            scratch_dir: Directory for scratch files (default: system temp dir)
            prefix: File name prefix
        """
        self.scratch_dir = scratch_dir if scratch_dir is not None else Path(tempfile.gettempdir())
        self.prefix = prefix

    def allocate(self, role: TempFileRole, suffix: str | None = None) -> TemporaryFile:
        """Reserve a unique scratch path for role.

        Raises:
            TempFileCreationError: If the scratch directory is unusable
        """
        if suffix is None:
            suffix = _DEFAULT_SUFFIXES[role]
        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TempFileCreationError(role, str(e)) from e

        path = self.scratch_dir / f"{self.prefix}{uuid.uuid4().hex}{suffix}"
        if path.exists():
            raise TempFileCreationError(role, f"{path} already exists")
        return TemporaryFile(path=path, role=role)

    def release(self, temp_file: TemporaryFile) -> bool:
        """Delete a scratch file, best effort.

        Returns:
            True if a file was deleted, False if there was nothing to delete
            or deletion failed (failures are logged, not raised)
        """
        try:
            temp_file.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not delete temporary file", path=str(temp_file.path), role=temp_file.role.value, error=str(e))
            return False
        logger.debug("Deleted temporary file", path=str(temp_file.path), role=temp_file.role.value)
        return True

    def session(self) -> "TempFileSet":
        """Start a set of scratch files owned by a single invocation."""
        return TempFileSet(self)


class TempFileSet:
    """Scratch files of one invocation, released on exit.

    Used as a context manager. On exit, whether normal or through an
    exception, every allocated file that was not retained is released
    exactly once.

    Example:
        with manager.session() as files:
            raw = files.allocate(TempFileRole.RAW)
            ...
            files.retain(TempFileRole.RAW)  # keep it after exit
    """

    def __init__(self, manager: TempFileManager) -> None:
        self._manager = manager
        self._files: dict[TempFileRole, TemporaryFile] = {}
        self._retained: set[TempFileRole] = set()
        self._released = False
        self._lock = threading.Lock()

    def __enter__(self) -> "TempFileSet":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release_all()

    def allocate(self, role: TempFileRole) -> TemporaryFile:
        """Allocate the scratch file for role.

        Raises:
            TempFileCreationError: If allocation fails
            ValueError: If role was already allocated in this set
        """
        if role in self._files:
            raise ValueError(f"{role.value} file already allocated: {self._files[role].path}")
        temp_file = self._manager.allocate(role)
        self._files[role] = temp_file
        return temp_file

    def retain(self, *roles: TempFileRole) -> list[TemporaryFile]:
        """Keep the files for roles on disk after the set is released."""
        self._retained.update(roles)
        return [self._files[role] for role in roles if role in self._files]

    def get(self, role: TempFileRole) -> TemporaryFile | None:
        return self._files.get(role)

    @property
    def files(self) -> list[TemporaryFile]:
        """All files allocated so far, in allocation order."""
        return list(self._files.values())

    def release_all(self) -> None:
        """Release every non-retained file. Later calls do nothing."""
        with self._lock:
            if self._released:
                return
            self._released = True
        for role, temp_file in self._files.items():
            if role in self._retained:
                continue
            self._manager.release(temp_file)

# tests/conftest.py
"""Shared test fixtures.

Fixture Philosophy
==================

Orchestrator tests use the in-memory doubles from tests.helpers.doubles so
that every failure stage can be triggered deterministically. Runner and
end-to-end tests use real child processes started from the current
interpreter, because the runner's whole point is how it interacts with a
real process.
"""

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from ilastik_bridge.core.config import EngineSettings
from ilastik_bridge.core.logging import ENGINE_OUTPUT_LOGGER
from tests.helpers.doubles import RecordingCodec, write_fake_engine


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo configure_logging() and bound contextvars after each test.

    configure_logging() attaches a handler to whatever sys.stdout is during
    the test (a capture stream that is closed afterwards).
    """
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger(ENGINE_OUTPUT_LOGGER).setLevel(logging.NOTSET)


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def engine_path(tmp_path: Path) -> Path:
    """A fake engine that exits 0 without doing anything."""
    return write_fake_engine(tmp_path / "run_ilastik.py", "sys.exit(0)\n")


@pytest.fixture
def settings(engine_path: Path, scratch_dir: Path) -> EngineSettings:
    return EngineSettings(executable_path=engine_path, scratch_dir=scratch_dir, num_threads=2, max_ram_mb=1024)


@pytest.fixture
def codec() -> RecordingCodec:
    return RecordingCodec()

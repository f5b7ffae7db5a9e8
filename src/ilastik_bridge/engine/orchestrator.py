# src/ilastik_bridge/engine/orchestrator.py
"""Orchestrator for a single engine invocation.

Coordinates:
- Configuration check
- Writing raw and secondary inputs to scratch files
- Running the engine (or stopping early in save-only mode)
- Loading the engine's output
- Deleting scratch files on every path

Lifecycle:
    IDLE -> CONFIGURING -> SERIALIZING_INPUTS -> {SAVE_ONLY_DONE | INVOKING}
    INVOKING -> AWAITING_EXIT -> {LOADING_RESULT | FAILED}
    -> CLEANING_UP -> DONE

A configuration failure goes straight from CONFIGURING to DONE, since no
scratch file exists yet. SAVE_ONLY_DONE goes straight to DONE and keeps
both input files. A cancel request already set after serialization goes
from SERIALIZING_INPUTS to FAILED without starting the engine. Every other
path passes through CLEANING_UP exactly once, and the scratch files are
deleted even when an event handler raises.
"""

from __future__ import annotations

import threading
import time
import uuid
from typing import TYPE_CHECKING

import structlog

from ilastik_bridge.contracts.codec import INPUT_DATASET_KEY, DatasetCodec
from ilastik_bridge.contracts.enums import (
    InvocationMode,
    InvocationState,
    InvocationStatus,
    TempFileRole,
)
from ilastik_bridge.contracts.errors import (
    CancellationWarning,
    ConfigurationError,
    InvocationError,
    ProcessExecutionError,
    SerializationError,
)
from ilastik_bridge.contracts.events import InvocationCompleted, StateChanged
from ilastik_bridge.contracts.results import (
    ImageData,
    InvocationRequest,
    InvocationResult,
    ProcessOutcome,
    TemporaryFile,
)
from ilastik_bridge.core.config import require_configured
from ilastik_bridge.core.events import EventBusProtocol, NullEventBus
from ilastik_bridge.core.tempfiles import TempFileManager, TempFileSet
from ilastik_bridge.engine.command import build_invocation, compression_level_for
from ilastik_bridge.engine.loader import ResultLoader
from ilastik_bridge.engine.runner import ProcessRunner

if TYPE_CHECKING:
    from ilastik_bridge.core.config import EngineSettings

logger = structlog.get_logger(__name__)


class Orchestrator:
    """Runs engine invocations end to end.

    The orchestrator holds no per-invocation state: everything an
    invocation owns lives in locals and its own TempFileSet, so one
    instance can serve concurrent invocations from several threads.

    Failures never escape run(). Each one is logged with the stage it
    happened in and recorded as a typed error on the InvocationResult.
    """

    def __init__(
        self,
        codec: DatasetCodec,
        *,
        runner: ProcessRunner | None = None,
        temp_files: TempFileManager | None = None,
        event_bus: EventBusProtocol | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            codec: Reads and writes exchange files
            runner: Engine process runner (default: ProcessRunner())
            temp_files: Scratch file manager (default: one per invocation,
                in the scratch_dir of the settings)
            event_bus: Receives StateChanged and InvocationCompleted events
        """
        self._codec = codec
        self._runner = runner if runner is not None else ProcessRunner()
        self._temp_files = temp_files
        self._events: EventBusProtocol = event_bus if event_bus is not None else NullEventBus()
        self._loader = ResultLoader(codec)

    def run(
        self,
        settings: EngineSettings | None,
        request: InvocationRequest,
        *,
        cancel_event: threading.Event | None = None,
    ) -> InvocationResult:
        """Run one invocation.

        Args:
            settings: Engine configuration; None counts as unconfigured
            request: Inputs and mode
            cancel_event: Terminates a running engine when set

        Returns:
            InvocationResult in state DONE
        """
        invocation_id = uuid.uuid4().hex
        result = InvocationResult(
            invocation_id=invocation_id,
            status=InvocationStatus.FAILED,
            states=[InvocationState.IDLE],
        )
        start = time.monotonic()

        with structlog.contextvars.bound_contextvars(invocation_id=invocation_id):
            self._run(settings, request, result, cancel_event)
            self._transition(result, InvocationState.DONE)
            logger.info("Invocation finished", status=result.status.value)

        self._events.emit(
            InvocationCompleted(
                invocation_id=invocation_id,
                status=result.status,
                duration_seconds=time.monotonic() - start,
                error_message=str(result.error) if result.error is not None else None,
            )
        )
        return result

    def _run(
        self,
        settings: EngineSettings | None,
        request: InvocationRequest,
        result: InvocationResult,
        cancel_event: threading.Event | None,
    ) -> None:
        self._transition(result, InvocationState.CONFIGURING)
        try:
            configured = require_configured(settings)
        except ConfigurationError as e:
            logger.error("ilastik must be configured before use", error=str(e))
            result.error = e
            return

        temp_files = self._temp_files if self._temp_files is not None else TempFileManager(configured.scratch_dir)
        # Leaving the block releases the files even if an event handler raises
        with temp_files.session() as files:
            try:
                self._transition(result, InvocationState.SERIALIZING_INPUTS)
                raw_file = self._serialize(files, TempFileRole.RAW, request.raw, 0)
                secondary_file = self._serialize(
                    files,
                    TempFileRole.SECONDARY,
                    request.secondary,
                    compression_level_for(request.secondary_kind),
                )

                if request.mode == InvocationMode.SAVE_ONLY:
                    result.retained_files = files.retain(TempFileRole.RAW, TempFileRole.SECONDARY)
                    result.status = InvocationStatus.SAVED
                    logger.info(
                        "Saved files for training",
                        raw=str(raw_file.path),
                        secondary=str(secondary_file.path),
                        hint="Train an ilastik project on these and copy the raw data into the project file",
                    )
                    self._transition(result, InvocationState.SAVE_ONLY_DONE)
                    return

                output_file = files.allocate(TempFileRole.OUTPUT)
                # require_configured guarantees an executable
                assert configured.executable_path is not None
                spec = build_invocation(
                    executable_path=configured.executable_path,
                    project_file=request.project_file,
                    raw_path=raw_file.path,
                    secondary_path=secondary_file.path,
                    secondary_kind=request.secondary_kind,
                    output_path=output_file.path,
                    output_format=configured.output_format,
                )
                result.command = spec.command_line()

                if cancel_event is not None and cancel_event.is_set():
                    logger.warning("Cancelled before the engine was started")
                    self._fail(result, CancellationWarning())
                    return

                self._transition(result, InvocationState.INVOKING)
                logger.info("Running ilastik headless command", command=result.command)
                outcome = self._runner.run(
                    spec.executable_path,
                    spec.arguments(),
                    configured.environment_overlay(),
                    cancel_event=cancel_event,
                    timeout_seconds=configured.timeout_seconds,
                    on_started=lambda pid: self._transition(result, InvocationState.AWAITING_EXIT),
                )
                result.outcome = outcome

                if outcome.terminated_by_cancellation:
                    self._fail(result, CancellationWarning(outcome.exit_code))
                    return

                self._transition(result, InvocationState.LOADING_RESULT)
                result.result = self._loader.load(output_file.path)
                result.status = InvocationStatus.SUCCEEDED
            except ProcessExecutionError as e:
                result.outcome = ProcessOutcome(exit_code=e.exit_code)
                self._fail(result, e)
            except InvocationError as e:
                self._fail(result, e)
            finally:
                if result.status != InvocationStatus.SAVED:
                    self._transition(result, InvocationState.CLEANING_UP)
                    logger.info("Cleaning up", files=[str(f.path) for f in files.files])

    def _serialize(self, files: TempFileSet, role: TempFileRole, image: ImageData, compression_level: int) -> TemporaryFile:
        """Allocate the scratch file for role and write image into it.

        Raises:
            TempFileCreationError: If the scratch file cannot be allocated
            SerializationError: If the codec fails to write
        """
        temp_file = files.allocate(role)
        logger.info(
            "Dumping input image to temporary file",
            role=role.value,
            path=str(temp_file.path),
            compression_level=compression_level,
        )
        try:
            self._codec.write(image, temp_file.path, INPUT_DATASET_KEY, compression_level)
        except Exception as e:
            raise SerializationError(role, temp_file.path) from e
        return temp_file

    def _fail(self, result: InvocationResult, error: InvocationError) -> None:
        result.error = error
        if isinstance(error, CancellationWarning):
            result.status = InvocationStatus.CANCELLED
            logger.warning("Execution got cancelled", error=str(error))
        else:
            result.status = InvocationStatus.FAILED
            cause = error.__cause__
            logger.error(
                "ilastik object classification prediction failed",
                stage=error.stage.value,
                error_type=type(error).__name__,
                error=str(error),
                cause=repr(cause) if cause is not None else None,
            )
        self._transition(result, InvocationState.FAILED)

    def _transition(self, result: InvocationResult, state: InvocationState) -> None:
        previous = result.states[-1]
        result.states.append(state)
        logger.debug("Invocation state changed", previous=previous.value, current=state.value)
        self._events.emit(StateChanged(invocation_id=result.invocation_id, previous=previous, current=state))

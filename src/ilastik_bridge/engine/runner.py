# src/ilastik_bridge/engine/runner.py
"""Engine subprocess execution.

Runs the engine as a child process while two drainer threads copy its
stdout and stderr into the log line by line. The drainers run for the
whole lifetime of the child: a pipe buffer nobody reads fills up and
stalls the child forever, so draining must never wait for exit. A failing
log sink or line handler is reported once and reading carries on.

On POSIX the engine runs in its own session. The usual launcher is a shell
script that starts the real engine as a grandchild, so cancellation signals
the whole process group rather than the launcher alone.

Thread Safety:
    run() is called from the invocation's control thread. Each call starts
    its own two drainer threads and joins them before returning, so a
    single ProcessRunner can serve concurrent invocations.
"""

import contextvars
import os
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import IO

import structlog

from ilastik_bridge.contracts.enums import OutputStream
from ilastik_bridge.contracts.errors import ProcessExecutionError, ProcessLaunchError
from ilastik_bridge.contracts.results import ProcessOutcome
from ilastik_bridge.core.logging import ENGINE_OUTPUT_LOGGER

__all__ = ["LineHandler", "ProcessRunner"]

logger = structlog.get_logger(__name__)
output_logger = structlog.get_logger(ENGINE_OUTPUT_LOGGER)

LineHandler = Callable[[OutputStream, str], None]

_OWN_PROCESS_GROUP = os.name == "posix"


class ProcessRunner:
    """Spawns the engine, drains its output, and classifies how it ended.

    Cancellation (a set cancel_event, an elapsed timeout, or a
    KeyboardInterrupt during the wait) terminates the engine and is reported
    as ProcessOutcome(terminated_by_cancellation=True), never raised.

    Example:
        >>> runner = ProcessRunner()
        >>> outcome = runner.run(Path("/opt/ilastik/run_ilastik.sh"), spec.arguments(), settings.environment_overlay())
    """

    def __init__(
        self,
        *,
        poll_interval: float = 0.1,
        terminate_grace_seconds: float = 5.0,
        line_handler: LineHandler | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            poll_interval: How often the exit wait checks for cancellation
            terminate_grace_seconds: Time between terminate() and kill()
            line_handler: Optional extra sink receiving every output line
        """
        self._poll_interval = poll_interval
        self._terminate_grace_seconds = terminate_grace_seconds
        self._line_handler = line_handler

    def run(
        self,
        executable: Path | str,
        arguments: Sequence[str],
        environment_overlay: dict[str, str] | None = None,
        *,
        cancel_event: threading.Event | None = None,
        timeout_seconds: float | None = None,
        on_started: Callable[[int], None] | None = None,
    ) -> ProcessOutcome:
        """Run the engine and block until it exits or is cancelled.

        Args:
            executable: Engine launcher
            arguments: Arguments following the executable
            environment_overlay: Variables set on top of os.environ
            cancel_event: Terminates the engine when set
            timeout_seconds: Terminates the engine when elapsed
            on_started: Called with the pid once the process is running

        Returns:
            ProcessOutcome for a zero exit or a cancelled run

        Raises:
            ProcessLaunchError: If the process cannot be started
            ProcessExecutionError: If the engine exits nonzero on its own
        """
        command = [str(executable), *arguments]
        env = {**os.environ, **(environment_overlay or {})}

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                text=True,
                errors="replace",
                start_new_session=_OWN_PROCESS_GROUP,
            )
        except OSError as e:
            logger.error("Could not launch engine", executable=str(executable), error=str(e))
            raise ProcessLaunchError(str(executable), str(e)) from e

        logger.info("Engine started", pid=process.pid)

        # Both pipes are guaranteed present: stdout/stderr=PIPE above
        assert process.stdout is not None
        assert process.stderr is not None
        drainers = [
            self._start_drainer(process.stdout, OutputStream.STDOUT),
            self._start_drainer(process.stderr, OutputStream.STDERR),
        ]

        cancelled = False
        try:
            if on_started is not None:
                on_started(process.pid)
            cancelled = self._wait(process, cancel_event, timeout_seconds)
        except KeyboardInterrupt:
            logger.warning("Execution got interrupted")
            self._terminate(process)
            cancelled = True
        finally:
            # Never leave an orphaned engine behind
            if process.poll() is None:
                self._terminate(process)
            for drainer in drainers:
                drainer.join(timeout=self._terminate_grace_seconds)
                if drainer.is_alive():
                    logger.warning("Output drainer did not finish", thread=drainer.name)

        exit_code = process.returncode
        if cancelled:
            logger.warning("Engine terminated by cancellation", exit_code=exit_code)
            return ProcessOutcome(exit_code=exit_code, terminated_by_cancellation=True)
        if exit_code != 0:
            logger.error("ilastik crashed", exit_code=exit_code)
            raise ProcessExecutionError(exit_code)

        logger.info("ilastik finished successfully")
        return ProcessOutcome(exit_code=0)

    def _start_drainer(self, stream: IO[str], name: OutputStream) -> threading.Thread:
        # Each thread gets its own copy so bound log context (invocation_id) follows it
        context = contextvars.copy_context()
        thread = threading.Thread(
            target=context.run,
            args=(self._drain, stream, name),
            name=f"engine-{name.value}",
            daemon=True,
        )
        thread.start()
        return thread

    def _drain(self, stream: IO[str], name: OutputStream) -> None:
        """Copy lines from stream to the log until end-of-stream.

        Stopping early would close the pipe under a running engine, so a
        failing sink is logged once and every later line is still read.
        """
        sink_failed = False
        with stream:
            for raw_line in stream:
                line = raw_line.rstrip("\r\n")
                if not line:
                    continue
                try:
                    self._emit(name, line)
                except Exception as e:
                    if not sink_failed:
                        sink_failed = True
                        logger.warning(
                            "Engine output sink failed, draining continues",
                            stream=name.value,
                            error_type=type(e).__name__,
                            error=str(e),
                        )

    def _emit(self, name: OutputStream, line: str) -> None:
        if name == OutputStream.STDERR:
            output_logger.warning(line, stream=name.value)
        else:
            output_logger.info(line, stream=name.value)
        if self._line_handler is not None:
            self._line_handler(name, line)

    def _wait(
        self,
        process: subprocess.Popen[str],
        cancel_event: threading.Event | None,
        timeout_seconds: float | None,
    ) -> bool:
        """Wait for exit, checking for cancellation between polls.

        Returns:
            True if the process was terminated because of cancellation
        """
        deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        while True:
            try:
                process.wait(timeout=self._poll_interval)
                return False
            except subprocess.TimeoutExpired:
                pass

            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Cancellation requested, terminating engine", pid=process.pid)
                self._terminate(process)
                return True
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning("Engine timed out, terminating", pid=process.pid, timeout_seconds=timeout_seconds)
                self._terminate(process)
                return True

    def _terminate(self, process: subprocess.Popen[str]) -> None:
        """Terminate the engine, escalating to kill after the grace period.

        With its own process group, members that outlive the launcher are
        killed too, so nothing keeps the pipes or the scratch files open.
        """
        self._signal(process, kill=False)
        try:
            process.wait(timeout=self._terminate_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Engine did not terminate, killing", pid=process.pid)
            self._signal(process, kill=True)
            process.wait()
        if _OWN_PROCESS_GROUP and self._group_alive(process.pid):
            logger.warning("Engine processes outlived the launcher, killing", pgid=process.pid)
            self._signal(process, kill=True)

    def _signal(self, process: subprocess.Popen[str], *, kill: bool) -> None:
        if not _OWN_PROCESS_GROUP:
            if kill:
                process.kill()
            else:
                process.terminate()
            return
        # start_new_session makes the launcher its group leader
        try:
            os.killpg(process.pid, signal.SIGKILL if kill else signal.SIGTERM)
        except ProcessLookupError:
            pass

    @staticmethod
    def _group_alive(pgid: int) -> bool:
        try:
            os.killpg(pgid, 0)
        except ProcessLookupError:
            return False
        return True

# tests/engine/test_process_runner.py
"""Tests for the engine subprocess runner.

All tests run real child processes from the current interpreter.
"""

import os
import sys
import threading
import time
from pathlib import Path

import pytest
import structlog

from ilastik_bridge.contracts import OutputStream, ProcessExecutionError, ProcessLaunchError, ProcessOutcome
from ilastik_bridge.engine.runner import ProcessRunner


class LineRecorder:
    """Thread-safe line_handler collecting (stream, line) pairs."""

    def __init__(self) -> None:
        self.lines: list[tuple[OutputStream, str]] = []
        self._lock = threading.Lock()

    def __call__(self, stream: OutputStream, line: str) -> None:
        with self._lock:
            self.lines.append((stream, line))

    def of(self, stream: OutputStream) -> list[str]:
        return [line for s, line in self.lines if s == stream]


def _python(code: str) -> list[str]:
    return ["-c", code]


def _is_running(pid: int) -> bool:
    """Whether pid is a live process (zombies count as exited)."""
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return False
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


class TestExitStatus:
    """Classification of how the process ended."""

    def test_zero_exit_is_success(self) -> None:
        outcome = ProcessRunner().run(sys.executable, _python("pass"))

        assert outcome == ProcessOutcome(exit_code=0, terminated_by_cancellation=False)
        assert outcome.succeeded

    def test_nonzero_exit_raises_with_code(self) -> None:
        with pytest.raises(ProcessExecutionError) as exc_info:
            ProcessRunner().run(sys.executable, _python("import sys; sys.exit(3)"))

        assert exc_info.value.exit_code == 3

    def test_missing_executable_is_launch_error(self, tmp_path: Path) -> None:
        missing = tmp_path / "no_such_engine"

        with pytest.raises(ProcessLaunchError) as exc_info:
            ProcessRunner().run(missing, ["--headless"])

        assert exc_info.value.executable == str(missing)
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_non_executable_file_is_launch_error(self, tmp_path: Path) -> None:
        engine = tmp_path / "run_ilastik.sh"
        engine.write_text("#!/bin/sh\nexit 0\n")
        engine.chmod(0o644)

        with pytest.raises(ProcessLaunchError):
            ProcessRunner().run(engine, ["--headless"])

    def test_on_started_receives_pid(self) -> None:
        pids: list[int] = []

        ProcessRunner().run(sys.executable, _python("pass"), on_started=pids.append)

        assert len(pids) == 1
        assert pids[0] > 0


class TestOutputDraining:
    """Concurrent capture of stdout and stderr."""

    def test_lines_tagged_by_stream(self) -> None:
        recorder = LineRecorder()
        code = "import sys; print('hello'); print('oops', file=sys.stderr); print('world')"

        ProcessRunner(line_handler=recorder).run(sys.executable, _python(code))

        assert recorder.of(OutputStream.STDOUT) == ["hello", "world"]
        assert recorder.of(OutputStream.STDERR) == ["oops"]

    def test_output_captured_even_on_failure(self) -> None:
        recorder = LineRecorder()
        code = "import sys; print('bad project file', file=sys.stderr); sys.exit(1)"

        with pytest.raises(ProcessExecutionError):
            ProcessRunner(line_handler=recorder).run(sys.executable, _python(code))

        assert recorder.of(OutputStream.STDERR) == ["bad project file"]

    def test_stderr_logged_as_warning_stdout_as_info(self) -> None:
        code = "import sys; print('progress 50%'); print('deprecated option', file=sys.stderr)"

        with structlog.testing.capture_logs() as logs:
            ProcessRunner().run(sys.executable, _python(code))

        engine_lines = {entry["event"]: entry for entry in logs if "stream" in entry}
        assert engine_lines["progress 50%"]["log_level"] == "info"
        assert engine_lines["progress 50%"]["stream"] == "stdout"
        assert engine_lines["deprecated option"]["log_level"] == "warning"
        assert engine_lines["deprecated option"]["stream"] == "stderr"

    def test_large_output_on_both_streams_does_not_deadlock(self) -> None:
        """Output far beyond the pipe buffer on both streams still completes."""
        recorder = LineRecorder()
        code = (
            "import sys\n"
            "line = 'x' * 100\n"
            "for i in range(20000):\n"
            "    sys.stderr.write(line + '\\n')\n"
            "for i in range(20000):\n"
            "    sys.stdout.write(line + '\\n')\n"
        )

        outcome = ProcessRunner(line_handler=recorder).run(sys.executable, _python(code), timeout_seconds=60)

        assert outcome.terminated_by_cancellation is False
        assert len(recorder.of(OutputStream.STDERR)) == 20000
        assert len(recorder.of(OutputStream.STDOUT)) == 20000

    def test_environment_overlay_reaches_child(self) -> None:
        recorder = LineRecorder()
        code = "import os; print(os.environ['LAZYFLOW_THREADS']); print(os.environ['PATH'] != '')"

        ProcessRunner(line_handler=recorder).run(sys.executable, _python(code), {"LAZYFLOW_THREADS": "3"})

        assert recorder.of(OutputStream.STDOUT) == ["3", "True"]

    def test_overlay_does_not_modify_parent_environment(self) -> None:
        ProcessRunner().run(sys.executable, _python("pass"), {"ILASTIK_BRIDGE_TEST_ONLY": "1"})

        assert "ILASTIK_BRIDGE_TEST_ONLY" not in os.environ

    def test_failing_line_handler_does_not_stop_draining(self) -> None:
        """The engine keeps running normally when an output observer breaks."""
        seen: list[str] = []

        def broken_handler(stream: OutputStream, line: str) -> None:
            seen.append(line)
            raise RuntimeError("sink gone")

        code = "for i in range(2000):\n    print('line', i)\n"

        with structlog.testing.capture_logs() as logs:
            outcome = ProcessRunner(line_handler=broken_handler).run(sys.executable, _python(code), timeout_seconds=60)

        assert outcome.succeeded
        assert len(seen) == 2000
        failures = [e for e in logs if e["event"] == "Engine output sink failed, draining continues"]
        assert len(failures) == 1
        assert failures[0]["error_type"] == "RuntimeError"
        assert failures[0]["stream"] == "stdout"


class TestCancellation:
    """Forced termination on cancel request or timeout."""

    def test_cancel_event_terminates_process(self) -> None:
        cancel_event = threading.Event()
        timer = threading.Timer(0.5, cancel_event.set)
        timer.start()
        start = time.monotonic()

        try:
            outcome = ProcessRunner(poll_interval=0.05).run(
                sys.executable,
                _python("import time; time.sleep(60)"),
                cancel_event=cancel_event,
            )
        finally:
            timer.cancel()

        assert outcome.terminated_by_cancellation is True
        assert outcome.exit_code != 0
        assert not outcome.succeeded
        assert time.monotonic() - start < 30

    def test_timeout_terminates_process(self) -> None:
        start = time.monotonic()

        outcome = ProcessRunner(poll_interval=0.05).run(
            sys.executable,
            _python("import time; time.sleep(60)"),
            timeout_seconds=0.5,
        )

        assert outcome.terminated_by_cancellation is True
        assert time.monotonic() - start < 30

    def test_process_ignoring_terminate_is_killed(self) -> None:
        code = (
            "import signal, sys, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(60)\n"
        )
        recorder = LineRecorder()
        runner = ProcessRunner(poll_interval=0.05, terminate_grace_seconds=0.5, line_handler=recorder)
        cancel_event = threading.Event()

        def cancel_when_ready() -> None:
            deadline = time.monotonic() + 20
            while not recorder.of(OutputStream.STDOUT) and time.monotonic() < deadline:
                time.sleep(0.05)
            cancel_event.set()

        threading.Thread(target=cancel_when_ready, daemon=True).start()
        outcome = runner.run(sys.executable, _python(code), cancel_event=cancel_event)

        assert outcome.terminated_by_cancellation is True
        assert outcome.exit_code != 0

    def test_cancellation_is_not_raised(self) -> None:
        cancel_event = threading.Event()
        cancel_event.set()

        outcome = ProcessRunner(poll_interval=0.05).run(
            sys.executable,
            _python("import time; time.sleep(60)"),
            cancel_event=cancel_event,
        )

        assert isinstance(outcome, ProcessOutcome)
        assert outcome.terminated_by_cancellation is True

    @pytest.mark.skipif(not sys.platform.startswith("linux"), reason="process groups and /proc are Linux specific")
    @pytest.mark.parametrize("ignore_sigterm", [False, True])
    def test_cancel_stops_engine_started_by_shell_launcher(self, tmp_path: Path, ignore_sigterm: bool) -> None:
        """A shell launcher's engine process dies with it."""
        engine_code = "import os, signal, time\n"
        if ignore_sigterm:
            engine_code += "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        engine_code += "print(os.getpid(), flush=True)\ntime.sleep(60)\n"
        engine = tmp_path / "engine.py"
        engine.write_text(engine_code)
        launcher = tmp_path / "run_ilastik.sh"
        # The trailing exit keeps the shell from exec'ing into the engine
        launcher.write_text(f'#!/bin/sh\n"{sys.executable}" "{engine}" "$@"\nexit $?\n')
        launcher.chmod(0o755)

        recorder = LineRecorder()
        cancel_event = threading.Event()

        def cancel_when_ready() -> None:
            deadline = time.monotonic() + 20
            while not recorder.of(OutputStream.STDOUT) and time.monotonic() < deadline:
                time.sleep(0.05)
            cancel_event.set()

        threading.Thread(target=cancel_when_ready, daemon=True).start()
        runner = ProcessRunner(poll_interval=0.05, terminate_grace_seconds=2.0, line_handler=recorder)
        outcome = runner.run(launcher, ["--headless"], cancel_event=cancel_event, timeout_seconds=30)

        assert outcome.terminated_by_cancellation is True
        engine_pid = int(recorder.of(OutputStream.STDOUT)[0])
        deadline = time.monotonic() + 5
        while _is_running(engine_pid) and time.monotonic() < deadline:
            time.sleep(0.05)
        assert not _is_running(engine_pid)

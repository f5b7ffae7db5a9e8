# src/ilastik_bridge/cli.py
"""ilastik-bridge Command Line Interface.

Entry point for the ilastik-bridge CLI tool.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from ilastik_bridge import __version__
from ilastik_bridge.contracts import (
    AXIS_ORDER,
    INPUT_DATASET_KEY,
    OUTPUT_DATASET_KEY,
    ConfigurationError,
    DatasetCodec,
    ImageData,
    InvocationMode,
    InvocationRequest,
    SecondaryInputKind,
)
from ilastik_bridge.core.config import EngineSettings, load_settings, require_configured

__all__ = [
    "app",
    "load_settings",  # Re-exported from config for convenience
]

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

app = typer.Typer(
    name="ilastik-bridge",
    help="Run headless ilastik object classification on HDF5 images.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"ilastik-bridge version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load ILASTIK_BRIDGE_* and engine variables from a .env file.

    Without env_file, python-dotenv searches the current directory and its
    parents. Variables already set in the environment win.

    Returns:
        True if a .env file was found and loaded.

    Raises:
        typer.Exit: If an explicit env_file does not exist.
    """
    from dotenv import load_dotenv

    if env_file is None:
        return load_dotenv(override=False)
    if not env_file.exists():
        typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return load_dotenv(env_file, override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Do not read ILASTIK_BRIDGE_* settings from a .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Read settings from this .env file instead of searching for one.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug details such as every state transition.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit logs as JSON lines.",
    ),
    engine_log_level: str | None = typer.Option(
        None,
        "--engine-log-level",
        help="Level for relayed ilastik output, e.g. WARNING to show only its stderr.",
    ),
) -> None:
    """ilastik-bridge: headless ilastik from the command line."""
    from ilastik_bridge.core.logging import configure_logging

    if engine_log_level is not None and engine_log_level.upper() not in _LOG_LEVELS:
        raise typer.BadParameter(f"must be one of {', '.join(_LOG_LEVELS)}", param_hint="--engine-log-level")

    configure_logging(
        json_output=json_logs,
        level="DEBUG" if verbose else "INFO",
        engine_output_level=engine_log_level,
    )

    if no_dotenv:
        if env_file is not None:
            typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)
        return
    _load_dotenv(env_file)


def _load_settings_or_exit(settings: Path | None) -> EngineSettings:
    """Load settings, turning configuration problems into exit code 1."""
    try:
        return load_settings(settings.expanduser() if settings is not None else None)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


@contextmanager
def _cancel_on_signals() -> Iterator[threading.Event]:
    """Install SIGINT/SIGTERM handlers that set a cancel event.

    The first signal sets the event and restores the default SIGINT
    handler, so a second Ctrl-C force-kills via KeyboardInterrupt.
    Outside the main thread no handlers are installed.
    """
    cancel_event = threading.Event()

    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, frame: Any) -> None:
        cancel_event.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


def _validate_axes(value: str) -> str:
    """Accept an axis order such as 'yx' or 'zyxc' made of tzyxc letters."""
    axes = value.strip().lower()
    if not axes or len(set(axes)) != len(axes) or set(axes) - set(AXIS_ORDER):
        raise typer.BadParameter(f"{value!r} is not an axis order of distinct letters from {AXIS_ORDER!r}")
    return axes


@app.command()
def predict(
    project: Path = typer.Option(
        ...,
        "--project",
        "-p",
        help="Trained ilastik object classification project (.ilp).",
        exists=True,
        dir_okay=False,
    ),
    raw: Path = typer.Option(
        ...,
        "--raw",
        "-r",
        help="HDF5 file with the raw image.",
        exists=True,
        dir_okay=False,
    ),
    secondary: Path = typer.Option(
        ...,
        "--secondary",
        help="HDF5 file with pixel probabilities or a segmentation.",
        exists=True,
        dir_okay=False,
    ),
    kind: SecondaryInputKind = typer.Option(
        SecondaryInputKind.PROBABILITIES,
        "--kind",
        "-k",
        help="What the secondary input contains.",
        case_sensitive=False,
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="HDF5 file to write the result to (required unless --save-only).",
    ),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to engine settings YAML (ILASTIK_BRIDGE_* variables also apply).",
    ),
    raw_key: str = typer.Option(INPUT_DATASET_KEY, "--raw-key", help="Dataset key in the raw file."),
    secondary_key: str = typer.Option(INPUT_DATASET_KEY, "--secondary-key", help="Dataset key in the secondary file."),
    raw_axes: str = typer.Option(
        AXIS_ORDER,
        "--raw-axes",
        callback=_validate_axes,
        help="Axis order of the raw dataset when the file has no axistags.",
    ),
    secondary_axes: str = typer.Option(
        AXIS_ORDER,
        "--secondary-axes",
        callback=_validate_axes,
        help="Axis order of the secondary dataset when the file has no axistags.",
    ),
    compression: int = typer.Option(
        9,
        "--compression",
        min=0,
        max=9,
        help="gzip level for the result file.",
    ),
    save_only: bool = typer.Option(
        False,
        "--save-only",
        help="Only write the inputs to temporary files for training, do not run ilastik.",
    ),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Run object classification on a raw image and its secondary input."""
    from ilastik_bridge.cli_formatters import (
        create_console_formatters,
        create_json_formatters,
        subscribe_formatters,
    )
    from ilastik_bridge.core.codec import Hdf5DatasetCodec
    from ilastik_bridge.core.events import EventBus
    from ilastik_bridge.engine import Orchestrator

    if output is None and not save_only:
        typer.echo("Error: --output is required unless --save-only is set.", err=True)
        raise typer.Exit(1)

    engine_settings = _load_settings_or_exit(settings)
    codec = Hdf5DatasetCodec()

    try:
        raw_image = codec.read(raw, raw_key, AXIS_ORDER, stored_axes=raw_axes)
        secondary_image = codec.read(secondary, secondary_key, AXIS_ORDER, stored_axes=secondary_axes)
    except (OSError, KeyError, ValueError) as e:
        typer.echo(f"Error reading input: {e}", err=True)
        raise typer.Exit(1) from None

    request = InvocationRequest(
        raw=raw_image,
        secondary=secondary_image,
        secondary_kind=kind,
        project_file=project,
        mode=InvocationMode.SAVE_ONLY if save_only else InvocationMode.PREDICT_AND_LOAD,
    )

    event_bus = EventBus()
    formatters = create_json_formatters() if output_format == "json" else create_console_formatters()
    subscribe_formatters(event_bus, formatters)

    orchestrator = Orchestrator(codec, event_bus=event_bus)
    with _cancel_on_signals() as cancel_event:
        result = orchestrator.run(engine_settings, request, cancel_event=cancel_event)

    if not result.ok:
        typer.echo(f"Error: {result.message}", err=True)
        raise typer.Exit(1)

    if save_only:
        for temp_file in result.retained_files:
            typer.echo(f"{temp_file.role.value}: {temp_file.path}")
        return

    # ok and not save-only means a loaded result
    assert output is not None
    assert result.result is not None
    _write_result(codec, result.result, output, compression)
    typer.echo(f"Result written to {output}")


def _write_result(codec: DatasetCodec, image: ImageData, output: Path, compression: int) -> None:
    try:
        codec.write(image, output, OUTPUT_DATASET_KEY, compression)
    except (OSError, ValueError) as e:
        typer.echo(f"Error writing result to {output}: {e}", err=True)
        raise typer.Exit(1) from None


@app.command()
def check(
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to engine settings YAML.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON.",
    ),
) -> None:
    """Check that the engine is configured and can be found."""
    import json as json_module

    engine_settings = _load_settings_or_exit(settings)

    try:
        configured = require_configured(engine_settings)
    except ConfigurationError as e:
        if json_output:
            typer.echo(json_module.dumps({"status": "error", "error": str(e)}))
        else:
            typer.echo(f"✗ {e}", err=True)
        raise typer.Exit(1) from None

    overlay = configured.environment_overlay()
    if json_output:
        typer.echo(
            json_module.dumps(
                {
                    "status": "ok",
                    "executable": str(configured.executable_path),
                    "environment": overlay,
                    "scratch_dir": str(configured.scratch_dir) if configured.scratch_dir else None,
                }
            )
        )
        return

    typer.echo(f"✓ ilastik executable: {configured.executable_path}")
    for name, value in sorted(overlay.items()):
        typer.echo(f"  {name}={value}")


if __name__ == "__main__":
    app()

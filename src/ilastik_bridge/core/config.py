# src/ilastik_bridge/core/config.py
"""
Engine configuration schema and loading.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and shared read-only
by every invocation.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ilastik_bridge.contracts.errors import ConfigurationError


class EngineSettings(BaseModel):
    """Where the engine lives and how its process environment is set up.

    Example YAML:
        executable_path: /opt/ilastik-1.4.0-Linux/run_ilastik.sh
        num_threads: 8
        max_ram_mb: 16384
        environment:
          CUDA_VISIBLE_DEVICES: "0"
    """

    model_config = {"frozen": True}

    executable_path: Path | None = Field(
        default=None,
        description="Path to the headless engine launcher (run_ilastik.sh, ilastik.exe)",
    )
    num_threads: int = Field(
        default=-1,
        ge=-1,
        description="Worker threads for the engine, -1 for all cores",
    )
    max_ram_mb: int = Field(
        default=4096,
        gt=0,
        description="Memory budget for the engine in megabytes",
    )
    environment: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the engine process",
    )
    scratch_dir: Path | None = Field(
        default=None,
        description="Directory for exchange files (default: system temp dir)",
    )
    output_format: Literal["hdf5"] = Field(
        default="hdf5",
        description="Container format the engine writes its result in",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Terminate the engine after this many seconds",
    )

    @field_validator("executable_path", "scratch_dir")
    @classmethod
    def expand_user(cls, v: Path | None) -> Path | None:
        """Expand ~ in configured paths."""
        if v is None:
            return v
        return v.expanduser()

    @field_validator("environment", mode="before")
    @classmethod
    def stringify_environment(cls, v: Any) -> Any:
        """Environment values must be strings; YAML happily yields ints."""
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @property
    def is_configured(self) -> bool:
        """Whether the engine executable is set and exists."""
        return self.executable_path is not None and self.executable_path.is_file()

    def environment_overlay(self) -> dict[str, str]:
        """Environment variables to set on top of the parent's environment.

        Thread and memory limits are passed the way the engine reads them;
        explicit entries in `environment` take precedence.
        """
        overlay: dict[str, str] = {}
        if self.num_threads >= 0:
            overlay["LAZYFLOW_THREADS"] = str(self.num_threads)
        overlay["LAZYFLOW_TOTAL_RAM_MB"] = str(self.max_ram_mb)
        overlay.update(self.environment)
        return overlay


def require_configured(settings: EngineSettings | None) -> EngineSettings:
    """Return settings if they point at a usable engine.

    Raises:
        ConfigurationError: If settings are missing or unconfigured
    """
    if settings is None:
        raise ConfigurationError("Could not find configured ilastik options")
    if settings.executable_path is None:
        raise ConfigurationError("ilastik executable path must be configured before use")
    if not settings.is_configured:
        raise ConfigurationError(f"ilastik executable not found: {settings.executable_path}")
    return settings


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default = match.group(2)
            env_value = os.environ.get(var_name)
            if env_value is not None:
                return env_value
            if default is not None:
                return default
            # Left as-is; validation will report it
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def load_settings(config_path: Path | None = None) -> EngineSettings:
    """Load engine settings from YAML and environment variables.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (ILASTIK_BRIDGE_*) - highest priority
    2. Config file, when given
    3. Defaults from the Pydantic schema - lowest priority

    Nested keys use a double underscore, e.g.
    ILASTIK_BRIDGE_ENVIRONMENT__CUDA_VISIBLE_DEVICES=0.

    Args:
        config_path: Optional path to a YAML configuration file

    Returns:
        Validated EngineSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config_path is given but doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="ILASTIK_BRIDGE",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys and some internal settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    raw_config = _expand_env_vars(raw_config)

    return EngineSettings(**raw_config)

"""Engine invocation: command construction, process execution, orchestration.

Public API:
- Orchestrator: Runs one invocation end to end
- ProcessRunner: Runs the engine subprocess with concurrent output draining
- ResultLoader: Reads the engine's output
- InvocationSpec / build_invocation: Engine command line
"""

from ilastik_bridge.engine.command import (
    InvocationSpec,
    build_invocation,
    compression_level_for,
    secondary_flag_for,
)
from ilastik_bridge.engine.loader import ResultLoader
from ilastik_bridge.engine.orchestrator import Orchestrator
from ilastik_bridge.engine.runner import ProcessRunner

__all__ = [
    "InvocationSpec",
    "Orchestrator",
    "ProcessRunner",
    "ResultLoader",
    "build_invocation",
    "compression_level_for",
    "secondary_flag_for",
]

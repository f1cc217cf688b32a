"""
Supervision of external tool processes.

ProcessSupervisor launches one program, polls its console output or log file
through a pluggable telemetry parser, enforces time bounds and reports a RunResult.
"""

from .models import (
    LaunchError, PartialTelemetry, ProcessSpec, RunOutcome, RunResult,
    SupervisionPolicy, TelemetrySnapshot, TelemetrySource, TelemetryState
)
from .supervisor import ProcessSupervisor, decide_outcome

__all__ = [
    "LaunchError", "PartialTelemetry", "ProcessSpec", "ProcessSupervisor", "RunOutcome", "RunResult",
    "SupervisionPolicy", "TelemetrySnapshot", "TelemetrySource", "TelemetryState", "decide_outcome",
]

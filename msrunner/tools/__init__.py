"""
Tool plugins.

Each runner wraps one analysis tool (or a chain of tools), supervises it
with a ProcessSupervisor and reports a closeout status for the job.
"""

from typing import Dict, Type

from .base import CloseoutStatus, ToolRunner, ToolRunnerError, ToolRunResult
from .decontools import DeconToolsRunner
from .msalign import MSAlignRunner
from .mzrefinery import MzRefineryRunner
from .params import JobParams, JobParamsError

TOOL_RUNNERS: Dict[str, Type[ToolRunner]] = {
    "decontools": DeconToolsRunner,
    "msalign": MSAlignRunner,
    "mzrefinery": MzRefineryRunner,
}


def get_runner_class(tool: str) -> Type[ToolRunner]:
    """
    Looks up the runner for a tool name (case-insensitive).

    :raises ToolRunnerError: If no runner handles the tool.
    """
    try:
        return TOOL_RUNNERS[tool.strip().lower()]
    except KeyError:
        raise ToolRunnerError(f"Unknown tool '{tool}'. Available tools: "
                              f"{', '.join(r.tool_name for r in TOOL_RUNNERS.values())}") from None


__all__ = [
    "CloseoutStatus", "ToolRunner", "ToolRunnerError", "ToolRunResult", "JobParams", "JobParamsError",
    "DeconToolsRunner", "MSAlignRunner", "MzRefineryRunner", "TOOL_RUNNERS", "get_runner_class",
]

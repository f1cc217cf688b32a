import logging
import datetime
from pathlib import Path
from typing import Iterable, Optional

log = logging.getLogger(__name__)

TOOL_VERSION_INFO_PREFIX = "Tool_Version_Info_"
TOOL_VERSION_INFO_SECTION_HEADER = "ToolVersionInfo:"


def tool_version_file_path(work_dir: Path, tool_name: str) -> Path:
    return Path(work_dir) / f"{TOOL_VERSION_INFO_PREFIX}{tool_name}.txt"

def write_tool_version_info(work_dir: Path, tool_name: str, version: str, dataset: str = "", job: str = "",
                            tool_files: Optional[Iterable[Path]] = None) -> Path:
    """
    Writes the Tool_Version_Info_<tool>.txt file that records which tool produced the results.

    :param work_dir: The job's working directory.
    :param tool_name: The step tool name used in the file name.
    :param version: The version string parsed from the tool's output; '; ' separates entries.
    :param dataset: The dataset name.
    :param job: The job number.
    :param tool_files: Program files whose names and modification times are recorded.
    :return: The path of the file written.
    """
    path = tool_version_file_path(work_dir, tool_name)
    lines = [
        f"Date: {datetime.datetime.now().strftime('%Y-%m-%d %I:%M:%S %p')}",
        f"Dataset: {dataset}",
        f"Job: {job}",
        f"Tool: {tool_name}",
        TOOL_VERSION_INFO_SECTION_HEADER,
        *[entry.strip() for entry in version.split("; ") if entry.strip()],
    ]
    for tool_file in tool_files or ():
        tool_file = Path(tool_file)
        try:
            modified = datetime.datetime.fromtimestamp(tool_file.stat().st_mtime).strftime('%Y-%m-%d %H:%M:%S')
        except OSError:
            modified = "file not found"
        lines.append(f"{tool_file.name}: {modified}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    log.debug(f"Tool version info written to {path}")
    return path

def program_files_version(tool_files: Iterable[Path]) -> str:
    """
    Describes programs that report no version by file name and modification time.

    :param tool_files: Program files; ones that cannot be read are skipped.
    :return: Entries joined with '; ', or 'Unknown' when no file could be read.
    """
    entries = []
    for tool_file in tool_files:
        tool_file = Path(tool_file)
        try:
            modified = datetime.datetime.fromtimestamp(tool_file.stat().st_mtime).strftime('%Y-%m-%d %H:%M:%S')
        except OSError as e:
            log.debug(f"Cannot read {tool_file} for version info: {e}")
            continue
        entries.append(f"{tool_file.name} (modified {modified})")
    return "; ".join(entries) or "Unknown"

import logging
import pandas as pd
from pathlib import Path
from typing import List, Optional

from msrunner.parsers import DeconToolsLogParser
from msrunner.supervisor import ProcessSpec, RunOutcome, TelemetrySource
from msrunner.tools.base import CloseoutStatus, ToolRunner, ToolRunResult

log = logging.getLogger(__name__)

ISOS_FILE_SUFFIX = "_isos.csv"
SCANS_FILE_SUFFIX = "_scans.csv"
CONSOLE_OUTPUT_FILE = "DeconTools_ConsoleOutput.txt"
# Libraries beside DeconConsole whose file dates are recorded with its version
VERSION_LIBRARIES = ("DeconTools.Backend.dll", "UIMFLibrary.dll")
# DeconConsole builds before this one expect the file type between input and parameter file
FILE_TYPE_ARGUMENT_MAX_BUILD = 4400


def results_file_has_data(path: Path) -> bool:
    """True if a CSV result file has at least one data row below its header."""
    try:
        return not pd.read_csv(path, nrows=1).empty
    except pd.errors.EmptyDataError:
        return False


class DeconToolsRunner(ToolRunner):
    """
    Runs DeconConsole (DeconTools) to deisotope a dataset into _isos.csv and _scans.csv.

    Job parameters:
        ParamFile           DeconTools parameter file (required)
        InputFile           input file or folder in the work directory (default <dataset>.raw)
        FileType            DeconTools file type name (default Thermo_Raw)
        DeconConsoleBuild   build number of DeconConsole; 0 means current
    """

    tool_name = "DeconTools"

    def input_path(self) -> Path:
        return self.work_dir / self.job.get("InputFile", f"{self.dataset}.raw")

    def log_file_path(self, input_path: Path) -> Path:
        """DeconTools writes its log inside folder datasets (.D) and beside file datasets."""
        if input_path.is_dir():
            return input_path / f"{self.dataset}_log.txt"
        return self.work_dir / f"{input_path.stem}_log.txt"

    def build_arguments(self, input_path: Path, param_file: Path) -> List[str]:
        build = self.job.get("DeconConsoleBuild", 0)
        if 0 < build < FILE_TYPE_ARGUMENT_MAX_BUILD:
            return [str(input_path), self.job.get("FileType", "Thermo_Raw"), str(param_file)]
        return [str(input_path), str(param_file)]

    def find_bad_error_log(self) -> Optional[Path]:
        for path in sorted(self.work_dir.glob(f"{self.dataset}*BAD_ERROR_log.txt")):
            return path
        return None

    def run(self) -> ToolRunResult:
        executable = self.require_setting("DECONTOOLS_PATH")
        param_file = self.work_dir / self.job.require("ParamFile")
        input_path = self.input_path()
        if not input_path.exists():
            return self.fail(f"DeconTools input not found: {input_path}")
        if not param_file.exists():
            return self.fail(f"DeconTools parameter file not found: {param_file}")

        try:
            self.record_program_version((executable, *[executable.parent / name for name in VERSION_LIBRARIES]))
        except OSError as e:
            return self.fail(f"Error determining DeconTools version: {e}")

        log_path = self.log_file_path(input_path)
        if log_path.exists():
            log.debug(f"Deleting stale DeconTools log file {log_path}")
            log_path.unlink()

        spec = ProcessSpec(
            executable=executable,
            args=tuple(self.build_arguments(input_path, param_file)),
            working_dir=self.work_dir,
            name=self.tool_name,
        )
        policy = self.build_policy(
            console_output_path=self.work_dir / CONSOLE_OUTPUT_FILE,
            telemetry_source=TelemetrySource.FILE,
            telemetry_path=log_path,
            completion_grace=float(self.settings.DECONTOOLS_FINISHED_GRACE_SECONDS),
            trust_completion_marker=True,
        )
        result = self.run_stage("DeconConsole", spec, policy, DeconToolsLogParser())

        telemetry = result.telemetry
        stats = {"current_scan": telemetry.facts.get("current_scan"),
                 "accumulated_features": telemetry.facts.get("accumulated_features")}
        if result.outcome is RunOutcome.COMPLETED and result.exit_code not in (0, None):
            log.warning("DeconTools reported a non-zero exit code but its log file says processing finished")
            stats["finished_despite_exit_code"] = True

        bad_error_log = self.find_bad_error_log()
        if bad_error_log is not None:
            return self.fail(f"Error running DeconTools; Bad_Error_log file exists: {bad_error_log.name}",
                             result_files=[bad_error_log, log_path], stats=stats)

        if not result.succeeded:
            return self.fail(self.describe_failure(self.tool_name, result), result_files=[log_path], stats=stats)

        isos_file = self.work_dir / f"{self.dataset}{ISOS_FILE_SUFFIX}"
        scans_file = self.work_dir / f"{self.dataset}{SCANS_FILE_SUFFIX}"
        if not isos_file.exists():
            return self.fail(f"DeconTools results file not found: {isos_file.name}", result_files=[log_path], stats=stats)

        self.progress = 100.0
        result_files = [isos_file, scans_file, log_path, result.console_output_path]
        if not results_file_has_data(isos_file):
            self.message = f"No data found in the {ISOS_FILE_SUFFIX} file"
            log.warning(self.message)
            return self.closeout(CloseoutStatus.NO_DATA, result_files=result_files, stats=stats)

        return self.closeout(CloseoutStatus.SUCCESS, result_files=result_files, stats=stats)

import re
import logging
import pandas as pd
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from msrunner.parsers import MSGFPlusConsoleParser, MzRefinerConsoleParser, PPMErrorCharterConsoleParser
from msrunner.parsers.ppm_error_charter import MEDIAN_MASS_ERROR_PREFIX
from msrunner.supervisor import LaunchError, ProcessSpec, RunResult, TelemetrySource
from msrunner.tools.base import CloseoutStatus, ToolRunner, ToolRunnerError, ToolRunResult

log = logging.getLogger(__name__)

MSGFPLUS_CONSOLE_OUTPUT = "MSGFPlus_ConsoleOutput.txt"
MSCONVERT_CONSOLE_OUTPUT = "MSConvert_MzRefinery_ConsoleOutput.txt"
PPM_ERROR_CHARTER_CONSOLE_OUTPUT = "PPMErrorCharter_ConsoleOutput.txt"
ORPHAN_NOTE_FILE = "NOTE - Orphan folder; safe to delete.txt"

MZID_SUFFIX = "_msgfplus.mzid"
FIXED_MZML_SUFFIX = "_FIXED.mzML"
REFINEMENT_TSV_SUFFIX = ".mzRefinement.tsv"
MASS_ERRORS_PLOT_SUFFIX = "_MZRefinery_MassErrors.png"
HISTOGRAMS_PLOT_SUFFIX = "_MZRefinery_Histograms.png"

DEFAULT_SPEC_EVALUE_THRESHOLD = 1e-10
MZREFINER_FILTER = "mzRefiner {mzid} thresholdValue=-1e-10 thresholdStep=10 maxSteps=2"

#* --- Overall progress milestones (percent) ---
PROGRESS_MSGFPLUS_DONE = 96.0
PROGRESS_MZREFINERY_DONE = 97.0
PROGRESS_PLOTS_DONE = 98.0
PROGRESS_COMPLETE = 99.0

IGNORABLE_STDERR = "[MSData::stringToPair] Bad format:"
MIN_FIXED_FILE_SIZE_RATIO = 0.95

NO_HIGH_RES_DATA = "No high-resolution data in input file"
NO_SIGNIFICANT_PEAK = "No significant peak (ppm error histogram) found"
TOO_FEW_VALUES_RE = re.compile(r"Less than 100 .+ values in identfile .+ pass the threshold")
THRESHOLD_VALUE_RE = re.compile(r"MME <= (.+)")

REFINEMENT_COLUMNS = {
    "ThresholdValue": "threshold_range",
    "Excluded (score)": "excluded_by_score",
    "Excluded (mass error)": "excluded_by_mass_error",
    "MS1 Included": "ms1_included",
    "MS1 Shift method": "ms1_shift_method",
    "MS1 Final stDev": "ms1_final_stdev",
    "MS1 Tolerance for 99%": "ms1_tolerance_99pct",
    "MS2 Included": "ms2_included",
    "MS2 Shift method": "ms2_shift_method",
    "MS2 Final stDev": "ms2_final_stdev",
    "MS2 Tolerance for 99%": "ms2_tolerance_99pct",
}


def find_unusable_reason(console_text: str) -> Optional[Tuple[str, bool]]:
    """
    Looks for console messages meaning MzRefinery cannot correct this dataset.

    :return: (reason, force_plots) or None if the output looks usable.
    """
    if NO_HIGH_RES_DATA in console_text:
        return "No high-resolution data in input file; cannot use MzRefinery on this dataset", False
    if NO_SIGNIFICANT_PEAK in console_text:
        return "No significant peak in the ppm error histogram; cannot use MzRefinery on this dataset", True
    match = TOO_FEW_VALUES_RE.search(console_text)
    if match:
        return f"{match.group(0)}; cannot use MzRefinery on this dataset", False
    return None

def parse_refinement_stats(tsv_path: Path) -> Dict[str, Any]:
    """
    Reads the first data row of a .mzRefinement.tsv file.

    The result includes 'spec_evalue_threshold' from the ThresholdValue
    column ('-1.79e+308 <= MME <= 1e-010') and 'correction_mode', the MS1
    shift method or the MS2 one when MS1 has none.
    """
    stats: Dict[str, Any] = {"spec_evalue_threshold": DEFAULT_SPEC_EVALUE_THRESHOLD, "correction_mode": ""}
    try:
        frame = pd.read_csv(tsv_path, sep="\t", nrows=1, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        log.warning(f"MzRefinery stats file is empty: {tsv_path}")
        return stats
    if frame.empty:
        log.warning(f"MzRefinery stats file has no data row: {tsv_path}")
        return stats

    row = frame.iloc[0]
    for column, key in REFINEMENT_COLUMNS.items():
        if column not in frame.columns:
            continue
        value = str(row[column]).strip()
        if key.endswith("_method") or key == "threshold_range":
            stats[key] = value
            continue
        try:
            stats[key] = float(value) if "." in value or "e" in value.lower() else int(value)
        except ValueError:
            stats[key] = 0

    match = THRESHOLD_VALUE_RE.search(stats.get("threshold_range", ""))
    if match:
        try:
            stats["spec_evalue_threshold"] = float(match.group(1))
        except ValueError:
            log.warning(f"MzRefinery SpecEValue threshold not numeric in {tsv_path.name}: {match.group(1)}")
    elif stats.get("threshold_range"):
        log.warning(f"MzRefinery SpecEValue threshold not found in {tsv_path.name}: {stats['threshold_range']}")

    stats["correction_mode"] = stats.get("ms1_shift_method") or stats.get("ms2_shift_method") or ""
    log.info(f"MzRefinery stats: included {stats.get('ms1_included', 0)} MS1 spectra and "
             f"{stats.get('ms2_included', 0)} MS2 fragment ions; excluded {stats.get('excluded_by_score', 0)} "
             f"by score and {stats.get('excluded_by_mass_error', 0)} by mass error")
    return stats


class MzRefineryRunner(ToolRunner):
    """
    Corrects the m/z values of an mzML file with the MSConvert mzRefiner filter.

    Stages:
        1. MS-GF+ searches the mzML file (skipped if <dataset>_msgfplus.mzid exists)
        2. MSConvert applies mzRefiner using those identifications
        3. PPMErrorCharter plots the mass errors before and after refinement

    Job parameters:
        MzRefParamFile              MS-GF+ parameter file in the work directory (required)
        FastaFile                   protein database in the work directory (required)
        MSGFPlusJavaMemorySize      Java heap size in MB
        MSGFPlusThreads             search threads; 0 uses the MSGFPLUS_THREADS setting
    """

    tool_name = "MzRefinery"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.unable_to_use = False
        self.force_plots = False
        self.skipped_msgfplus = False
        self.stats: Dict[str, Any] = {}

    #* --- Paths ---
    @property
    def mzml_file(self) -> Path:
        return self.work_dir / f"{self.dataset}.mzML"

    @property
    def fixed_mzml_file(self) -> Path:
        return self.work_dir / f"{self.dataset}{FIXED_MZML_SUFFIX}"

    @property
    def mzid_file(self) -> Path:
        return self.work_dir / f"{self.dataset}{MZID_SUFFIX}"

    def plot_files(self) -> List[Path]:
        return [self.work_dir / f"{self.dataset}{MASS_ERRORS_PLOT_SUFFIX}",
                self.work_dir / f"{self.dataset}{HISTOGRAMS_PLOT_SUFFIX}"]

    #* --- Command lines ---
    def msgfplus_arguments(self, jar: Path, memory_mb: int, threads: int) -> List[str]:
        return [
            f"-Xmx{memory_mb}M", "-jar", str(jar),
            "-s", str(self.mzml_file),
            "-o", str(self.mzid_file),
            "-d", str(self.work_dir / self.job.require("FastaFile")),
            "-conf", str(self.work_dir / self.job.require("MzRefParamFile")),
            "-thread", str(threads),
        ]

    def msconvert_arguments(self) -> List[str]:
        return [
            str(self.mzml_file),
            "--outfile", str(self.fixed_mzml_file),
            "--filter", MZREFINER_FILTER.format(mzid=self.mzid_file),
            "--32", "--mzML",
        ]

    def ppm_error_charter_arguments(self, mzml_file: Path, threshold: float) -> List[str]:
        return [
            f"-I:{self.mzid_file}",
            f"-EValue:{threshold:.3E}",
            f"-MzML:{mzml_file}",
            "-Python",
        ]

    #* --- Stages ---
    def run_msgfplus(self) -> Optional[RunResult]:
        """Runs MS-GF+ unless its results already exist. Returns None when skipped."""
        if self.mzid_file.exists():
            log.info(f"Skipping MS-GF+ since {self.mzid_file.name} already exists")
            self.skipped_msgfplus = True
            self.progress = max(self.progress, PROGRESS_MSGFPLUS_DONE)
            return None

        java = self.require_setting("JAVA_PATH")
        jar = self.require_setting("MSGFPLUS_JAR_PATH")
        memory_mb = self.java_memory_mb("MSGFPlusJavaMemorySize", self.settings.MSGFPLUS_JAVA_MEMORY_MB)
        threads = self.job.get("MSGFPlusThreads", 0) or int(self.settings.MSGFPLUS_THREADS)

        spec = ProcessSpec(executable=java, args=tuple(self.msgfplus_arguments(jar, memory_mb, threads)),
                           working_dir=self.work_dir, name="MSGFPlus")
        policy = self.build_policy(
            console_output_path=self.work_dir / MSGFPLUS_CONSOLE_OUTPUT,
            console_output_includes_command_line=True,
            telemetry_source=TelemetrySource.STDOUT,
            completion_grace=float(self.settings.MSGFPLUS_STALL_MINUTES) * 60,
            scale_grace_with_runtime=True,
        )
        return self.run_stage("MSGFPlus", spec, policy, MSGFPlusConsoleParser(), version_files=(jar,))

    def run_mzrefiner(self) -> Tuple[bool, RunResult]:
        """
        Runs MSConvert with the mzRefiner filter.

        :return: (ok, result); ok is False for a failed run that was not explained by unusable data.
        """
        msconvert = self.require_setting("MSCONVERT_PATH")
        console_output = self.work_dir / MSCONVERT_CONSOLE_OUTPUT
        spec = ProcessSpec(executable=msconvert, args=tuple(self.msconvert_arguments()),
                           working_dir=self.work_dir, name="MSConvert")
        policy = self.build_policy(
            console_output_path=console_output,
            console_output_includes_command_line=True,
            telemetry_source=TelemetrySource.STDOUT,
        )
        result = self.run_stage("MSConvert", spec, policy, MzRefinerConsoleParser())

        console_text = console_output.read_text(encoding="utf-8", errors="replace") if console_output.exists() else ""
        unusable = find_unusable_reason(console_text)
        if unusable is not None:
            self.mark_unable_to_use(*unusable)
            return True, result
        if result.telemetry.facts.get("excluded"):
            self.mark_unable_to_use("Fewer than 100 matches after filtering; cannot use MzRefinery on this dataset",
                                    False)
            return True, result

        if result.console_errors and not self.stderr_is_ignorable(result):
            self.message = f"Error running MSConvert: {'; '.join(result.console_errors[:3])}"
            log.error(self.message)
            return False, result
        if not result.succeeded:
            self.message = self.describe_failure("MSConvert", result)
            log.error(self.message)
            return False, result

        tsv_file = self.work_dir / f"{self.dataset}{REFINEMENT_TSV_SUFFIX}"
        if tsv_file.exists():
            self.stats.update(parse_refinement_stats(tsv_file))
        else:
            log.warning(f"MzRefinery stats file not found: {tsv_file.name}")

        if str(self.stats.get("correction_mode", "")).startswith("Chose no shift"):
            log.info("MzRefinery chose no shift")
            if not self.fixed_mzml_file.exists():
                self.mzml_file.rename(self.fixed_mzml_file)
        elif self.stats.get("correction_mode"):
            log.info(f"MzRefinery shifted data using {self.stats['correction_mode']}, filtering on SpecEValue <= "
                     f"{self.stats['spec_evalue_threshold']:.3E}")

        self.progress = max(self.progress, PROGRESS_MZREFINERY_DONE)
        return True, result

    def stderr_is_ignorable(self, result: RunResult) -> bool:
        """MSConvert may report a Bad format error after writing a complete file."""
        if [line.strip() for line in result.console_errors if line.strip()] != [IGNORABLE_STDERR]:
            return False
        if not self.fixed_mzml_file.exists() or not self.mzml_file.exists():
            return False
        if self.fixed_mzml_file.stat().st_size >= self.mzml_file.stat().st_size * MIN_FIXED_FILE_SIZE_RATIO:
            log.warning(f"Ignoring error '{IGNORABLE_STDERR}' since {self.fixed_mzml_file.name} "
                        f"is at least {MIN_FIXED_FILE_SIZE_RATIO:.0%} the size of the original file")
            return True
        return False

    def run_ppm_error_charter(self, mzml_file: Path) -> bool:
        """Makes the mass error plots; True if both plot files exist afterwards."""
        charter = self.require_setting("PPM_ERROR_CHARTER_PATH")
        threshold = float(self.stats.get("spec_evalue_threshold", DEFAULT_SPEC_EVALUE_THRESHOLD))
        spec = ProcessSpec(executable=charter, args=tuple(self.ppm_error_charter_arguments(mzml_file, threshold)),
                           working_dir=self.work_dir, name="PPMErrorCharter")
        policy = self.build_policy(
            console_output_path=self.work_dir / PPM_ERROR_CHARTER_CONSOLE_OUTPUT,
            console_output_includes_command_line=True,
            telemetry_source=TelemetrySource.STDOUT,
        )
        result = self.run_stage("PPMErrorCharter", spec, policy, PPMErrorCharterConsoleParser())
        if not result.succeeded:
            log.error(self.describe_failure("PPMErrorCharter", result))
            return False

        missing = [plot.name for plot in self.plot_files() if not plot.exists()]
        if missing:
            log.error(f"PPMErrorCharter did not create {', '.join(missing)}")
            return False
        return True

    def store_mass_error_stats(self) -> Optional[str]:
        """
        Copies the median mass error before and after refinement from the PPMErrorCharter run into the stats.

        :return: An error message when the console output lacks the values.
        """
        facts = self.stage_results["PPMErrorCharter"].telemetry.facts
        if "mass_error_ppm" not in facts:
            return f"Did not find '{MEDIAN_MASS_ERROR_PREFIX}' in the PPM Error Charter output"
        if "mass_error_ppm_refined" not in facts:
            return f"Did not find '{MEDIAN_MASS_ERROR_PREFIX}' with two values in the PPM Error Charter output"

        self.stats["mass_error_ppm"] = facts["mass_error_ppm"]
        self.stats["mass_error_ppm_refined"] = facts["mass_error_ppm_refined"]
        self.message = (f"Median mass error changed from {facts['mass_error_ppm']:.2f} ppm "
                        f"to {facts['mass_error_ppm_refined']:.2f} ppm")
        log.info(self.message)
        return None

    def mark_unable_to_use(self, reason: str, force_plots: bool) -> None:
        log.error(reason)
        self.message = reason
        self.unable_to_use = True
        self.force_plots = force_plots

    def write_orphan_note(self) -> Path:
        path = self.work_dir / ORPHAN_NOTE_FILE
        path.write_text(
            "This folder contains MS-GF+ results and the MzRefinery log file from a failed attempt at running "
            f"MzRefinery for job {self.job.job}.\n"
            "The files can be used to investigate the MzRefinery failure.\n"
            "The directory can be safely deleted.\n",
            encoding="utf-8",
        )
        return path

    #* --- Main flow ---
    def run(self) -> ToolRunResult:
        if not self.mzml_file.exists():
            return self.fail(f"mzML file not found: {self.mzml_file.name}")

        msgfplus_result = self.run_msgfplus()
        if msgfplus_result is not None:
            if not msgfplus_result.succeeded:
                return self.fail(self.describe_failure("MS-GF+", msgfplus_result),
                                 result_files=[self.work_dir / MSGFPLUS_CONSOLE_OUTPUT])
            self.stats.update({key: msgfplus_result.telemetry.facts.get(key)
                               for key in ("thread_count", "task_count", "spectra_searched")
                               if key in msgfplus_result.telemetry.facts})
        if not self.mzid_file.exists():
            return self.fail(f"MS-GF+ results file not found: {self.mzid_file.name}",
                             result_files=[self.work_dir / MSGFPLUS_CONSOLE_OUTPUT])
        self.progress = max(self.progress, PROGRESS_MSGFPLUS_DONE)
        self.stats["skipped_msgfplus"] = self.skipped_msgfplus

        if not self.tool_version:
            tool_files = (self.settings.get("MSGFPLUS_JAR_PATH"), self.require_setting("MSCONVERT_PATH"),
                          self.require_setting("PPM_ERROR_CHARTER_PATH"))
            try:
                self.record_program_version(tool_files)
            except OSError as e:
                return self.fail(f"Error determining MzRefinery version: {e}")

        ok, _ = self.run_mzrefiner()
        console_files = [self.work_dir / name for name in
                         (MSGFPLUS_CONSOLE_OUTPUT, MSCONVERT_CONSOLE_OUTPUT, PPM_ERROR_CHARTER_CONSOLE_OUTPUT)]
        if not ok:
            return self.fail(self.message, result_files=console_files, stats=self.stats)

        if self.unable_to_use:
            return self.close_unable_to_use(console_files)

        if not self.fixed_mzml_file.exists():
            return self.fail(f"MzRefinery results file not found: {self.fixed_mzml_file.name}",
                             result_files=console_files, stats=self.stats)

        if not self.run_ppm_error_charter(self.fixed_mzml_file):
            return self.fail("Error running PPMErrorCharter", result_files=console_files, stats=self.stats)
        error = self.store_mass_error_stats()
        if error:
            return self.fail(error, result_files=console_files, stats=self.stats)
        self.progress = max(self.progress, PROGRESS_PLOTS_DONE)

        self.progress = PROGRESS_COMPLETE
        result_files = [self.fixed_mzml_file, self.mzid_file, self.work_dir / f"{self.dataset}{REFINEMENT_TSV_SUFFIX}",
                        *self.plot_files(), *console_files]
        return self.closeout(CloseoutStatus.SUCCESS, result_files=result_files, stats=self.stats)

    def close_unable_to_use(self, console_files: List[Path]) -> ToolRunResult:
        if self.force_plots and self.mzid_file.exists():
            source = self.fixed_mzml_file if self.fixed_mzml_file.exists() else self.mzml_file
            if source.exists():
                try:
                    if not self.run_ppm_error_charter(source):
                        log.warning("Unable to generate PPMError plots for debugging purposes")
                except (LaunchError, ToolRunnerError) as e:
                    log.warning(f"Error generating PPMError plots for debugging purposes: {e}")
            else:
                log.warning("Unable to generate PPMError plots for debugging purposes; .mzML file not found")

        note = self.write_orphan_note()
        self.progress = PROGRESS_COMPLETE
        result_files = [note, self.mzid_file, *self.plot_files(), *console_files]
        return self.closeout(CloseoutStatus.UNABLE_TO_USE_MZ_REFINERY, result_files=result_files, stats=self.stats)

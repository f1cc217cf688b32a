import shutil
import logging
from pathlib import Path
from typing import List, Optional

from msrunner.parsers import MSAlignConsoleParser, parse_key_value, trim_console_output
from msrunner.supervisor import ProcessSpec, TelemetrySource
from msrunner.tools.base import CloseoutStatus, ToolRunner, ToolRunResult

log = logging.getLogger(__name__)

MSALIGN_WORK_FOLDER = "MSAlign"
CONSOLE_OUTPUT_FILE = "MSAlign_ConsoleOutput.txt"
MSDECONV_FILE_SUFFIX = "_msdeconv.msalign"
RESULT_TABLE_SUFFIX = "_MSAlign_ResultTable.txt"
RESULT_DETAILS_SUFFIX = "_MSAlign_ResultDetails.txt"
INPUT_PROPERTIES_FILE = "input.properties"
MAIN_CLASS = "edu.ucsd.msalign.align.console.MsAlignPipeline"

# Keys written by the runner; copies of them in the parameter file are dropped
MANAGED_PROPERTY_KEYS = ("databasefilename", "spectrumfilename", "tableoutputfilename", "detailoutputfilename")


def result_table_has_data(path: Path) -> bool:
    """A result table is valid when a row holds an integer PrSM ID in its first or second column."""
    with Path(path).open("r", encoding="utf-8", errors="replace") as reader:
        for line in reader:
            columns = line.rstrip("\r\n").split("\t")
            if len(columns) < 2:
                continue
            if columns[0].strip().isdigit() or columns[1].strip().isdigit():
                return True
    return False


class MSAlignRunner(ToolRunner):
    """
    Runs MSAlign (Java) to identify proteoforms in a _msdeconv.msalign spectrum file.

    Job parameters:
        FastaFile               protein database in the work directory (required)
        MSAlignParamFile        MSAlign key=value parameter file in the work directory (required)
        MSAlignJavaMemorySize   Java heap size in MB
    """

    tool_name = "MSAlign"

    def msalign_work_dir(self) -> Path:
        return self.work_dir / MSALIGN_WORK_FOLDER

    def build_arguments(self, msalign_dir: Path, memory_mb: int) -> List[str]:
        return [
            f"-Xmx{memory_mb}M",
            "-classpath", str(msalign_dir / "jar" / "*"),
            MAIN_CLASS,
            "./",
        ]

    def write_input_properties(self, param_file: Path, msinput_dir: Path, fasta_name: str,
                               spectrum_name: str) -> Path:
        """
        Writes msinput/input.properties: the file names MSAlign should use followed
        by the settings from the job's parameter file.
        """
        path = msinput_dir / INPUT_PROPERTIES_FILE
        lines = [
            f"databaseFileName={fasta_name}",
            f"spectrumFileName={spectrum_name}",
            f"tableOutputFileName={self.dataset}{RESULT_TABLE_SUFFIX}",
            f"detailOutputFileName={self.dataset}{RESULT_DETAILS_SUFFIX}",
        ]
        with param_file.open("r", encoding="utf-8", errors="replace") as reader:
            for raw_line in reader:
                line = raw_line.rstrip("\r\n")
                if not line.strip() or line.lstrip().startswith("#"):
                    lines.append(line)
                    continue
                key, value = parse_key_value(line)
                if not key:
                    log.warning(f"Skipping malformed line in {param_file.name}: {line}")
                    continue
                if key.lower() in MANAGED_PROPERTY_KEYS:
                    continue
                lines.append(f"{key}={value}")

        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        log.debug(f"Created {path}")
        return path

    def prepare_inputs(self) -> Optional[str]:
        """Creates the msinput/msoutput folders and stages the input files. Returns an error message on failure."""
        fasta_file = self.work_dir / self.job.require("FastaFile")
        param_file = self.work_dir / self.job.require("MSAlignParamFile")
        spectrum_file = self.work_dir / f"{self.dataset}{MSDECONV_FILE_SUFFIX}"
        for required in (fasta_file, param_file, spectrum_file):
            if not required.exists():
                return f"MSAlign input file not found: {required.name}"

        msinput_dir = self.msalign_work_dir() / "msinput"
        msoutput_dir = self.msalign_work_dir() / "msoutput"
        msinput_dir.mkdir(parents=True, exist_ok=True)
        msoutput_dir.mkdir(parents=True, exist_ok=True)

        shutil.copy2(fasta_file, msinput_dir / fasta_file.name)
        shutil.move(str(spectrum_file), str(msinput_dir / spectrum_file.name))
        properties = self.write_input_properties(param_file, msinput_dir, fasta_file.name, spectrum_file.name)
        shutil.copy2(properties, self.work_dir / INPUT_PROPERTIES_FILE)
        return None

    def copy_results(self) -> List[Path]:
        """Copies the result table and details from msoutput to the work directory."""
        copied = []
        msoutput_dir = self.msalign_work_dir() / "msoutput"
        for suffix in (RESULT_TABLE_SUFFIX, RESULT_DETAILS_SUFFIX):
            source = msoutput_dir / f"{self.dataset}{suffix}"
            if not source.exists():
                log.warning(f"MSAlign result file not found: {source}")
                continue
            target = self.work_dir / source.name
            shutil.copy2(source, target)
            copied.append(target)
        return copied

    def run(self) -> ToolRunResult:
        java = self.require_setting("JAVA_PATH")
        msalign_dir = self.require_setting("MSALIGN_DIR")
        memory_mb = self.java_memory_mb("MSAlignJavaMemorySize", self.settings.MSALIGN_JAVA_MEMORY_MB)

        error = self.prepare_inputs()
        if error:
            return self.fail(error)

        console_output = self.work_dir / CONSOLE_OUTPUT_FILE
        spec = ProcessSpec(
            executable=java,
            args=tuple(self.build_arguments(msalign_dir, memory_mb)),
            working_dir=self.msalign_work_dir(),
            name=self.tool_name,
        )
        policy = self.build_policy(
            console_output_path=console_output,
            console_output_includes_command_line=True,
            telemetry_source=TelemetrySource.STDOUT,
        )
        result = self.run_stage("MSAlign", spec, policy, MSAlignConsoleParser(),
                                version_files=tuple(sorted((msalign_dir / "jar").glob("*.jar"))))
        trim_console_output(console_output)

        stats = {"current_scan": result.telemetry.facts.get("current_scan")}
        if not result.succeeded:
            return self.fail(self.describe_failure(self.tool_name, result), result_files=[console_output], stats=stats)

        result_files = self.copy_results() + [console_output, self.work_dir / INPUT_PROPERTIES_FILE]
        result_table = self.work_dir / f"{self.dataset}{RESULT_TABLE_SUFFIX}"
        if not result_table.exists():
            return self.fail(f"MSAlign results file not found: {result_table.name}",
                             result_files=result_files, stats=stats)

        self.progress = 100.0
        if not result_table_has_data(result_table):
            self.message = f"No results in {result_table.name}"
            log.warning(self.message)
            return self.closeout(CloseoutStatus.NO_DATA, result_files=result_files, stats=stats)

        return self.closeout(CloseoutStatus.SUCCESS, result_files=result_files, stats=stats)

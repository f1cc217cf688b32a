from datetime import datetime
from pathlib import Path

import pytest

from msrunner.parsers import (
    DeconToolsLogParser, GenericConsoleParser, MSAlignConsoleParser, MSGFPlusConsoleParser,
    MzRefinerConsoleParser, PPMErrorCharterConsoleParser, parse_key_value, trim_console_output
)
from msrunner.parsers.base import iter_lines
from msrunner.parsers.decontools import parse_log_timestamp


def test_parse_key_value() -> None:
    assert parse_key_value(" PercentComplete= 2.7") == ("PercentComplete", "2.7")
    assert parse_key_value("no equals sign") == ("", "")
    assert parse_key_value("=value") == ("", "")


def test_iter_lines_strips_carriage_returns() -> None:
    assert list(iter_lines("a\r\nb\r\n", 5)) == [(5, "a"), (6, "b")]
    assert list(iter_lines("a\nlast", 1)) == [(1, "a"), (2, "last")]


#* --- DeconTools ---
DECONTOOLS_LOG = (
    "11/19/2010 3:22:11 PM\tStarted processing\n"
    "11/19/2010 3:22:12 PM\tScan/Frame= 347; PercentComplete= 2.7; AccumlatedFeatures= 614\n"
    "11/19/2010 3:22:13 PM\tScan/Frame= 1,200; PercentComplete= 40.5; AccumulatedFeatures= 2,150\n"
)


def test_decontools_progress_and_facts() -> None:
    found = DeconToolsLogParser().parse(DECONTOOLS_LOG)
    assert found.progress == pytest.approx(0.405)
    assert found.facts["current_scan"] == 1200
    assert found.facts["accumulated_features"] == 2150
    assert found.completion_marker is None


def test_decontools_finished_line_with_timestamp() -> None:
    parser = DeconToolsLogParser()
    found = parser.parse(DECONTOOLS_LOG + "11/19/2010 3:23:11 PM\tFinished file processing\n")
    assert found.completion_marker == "Finished file processing"
    assert found.completion_line == 4
    assert found.completion_time == datetime(2010, 11, 19, 15, 23, 11)


def test_decontools_ignores_everything_after_finish() -> None:
    parser = DeconToolsLogParser()
    parser.parse("Finished file processing\n", 1)
    found = parser.parse("ERROR THROWN: late failure\n", 2)
    assert found.is_empty

    parser.reset()
    found = parser.parse("ERROR THROWN: after reset\n", 1)
    assert found.error_marker == "ERROR THROWN: after reset"


def test_decontools_error_marker_anywhere_in_line() -> None:
    found = DeconToolsLogParser().parse("ERROR THROWN at start\n", 7)
    assert found.error_marker == "ERROR THROWN at start"
    assert found.error_line == 7


def test_decontools_unparsable_date_leaves_completion_time_empty() -> None:
    found = DeconToolsLogParser().parse("sometime\tFinished file processing\n")
    assert found.completion_marker == "Finished file processing"
    assert found.completion_time is None


def test_parse_log_timestamp_formats() -> None:
    assert parse_log_timestamp("2020-03-04 10:11:12\t") == datetime(2020, 3, 4, 10, 11, 12)
    assert parse_log_timestamp("not a date") is None


#* --- MSAlign ---
MSALIGN_CONSOLE = (
    "MS-Align+ 0.7.1 2013-02-14\n"
    "Initializing indexes...\n"
    "Processing spectrum scan 660...         0% finished (0 minutes used).\n"
    "Processing spectrum scan 1329...        1% finished (0 minutes used).\n"
    "Processing spectrum scan 1649...       37% finished (2 minutes used).\n"
)


def test_msalign_version_and_progress() -> None:
    found = MSAlignConsoleParser().parse(MSALIGN_CONSOLE)
    assert found.version == "MS-Align+ 0.7.1 2013-02-14"
    assert found.progress == pytest.approx(0.37)
    assert found.facts["current_scan"] == 1649
    assert found.error_marker is None


def test_msalign_error_lines() -> None:
    found = MSAlignConsoleParser().parse("MS-Align+ 0.7\nerror reading properties\n")
    assert found.error_marker == "error reading properties"
    found = MSAlignConsoleParser().parse("Error: out of memory\n", 10)
    assert found.error_line == 10
    found = MSAlignConsoleParser().parse("Computing errors in spectra\n", 10)
    assert found.error_marker is None


def test_trim_console_output_keeps_one_line_per_hundred_scans(tmp_path: Path) -> None:
    path = tmp_path / "MSAlign_ConsoleOutput.txt"
    lines = ["MS-Align+ 0.7.1"]
    lines += [f"Processing spectrum scan {scan}...  {scan // 10}% finished." for scan in range(0, 260, 10)]
    lines += ["Deconvolution finished.", "Done"]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    assert trim_console_output(path)
    trimmed = path.read_text(encoding="utf-8").splitlines()
    scans = [line for line in trimmed if line.startswith("Processing spectrum")]
    assert scans[0].startswith("Processing spectrum scan 0.")
    assert "Processing spectrum scan 100...  10% finished." in trimmed
    assert "Processing spectrum scan 200...  20% finished." in trimmed
    # The last progress line is kept before the finish line
    assert trimmed[trimmed.index("Deconvolution finished.") - 1].startswith("Processing spectrum scan 250")
    assert len(scans) == 4
    assert not (tmp_path / "MSAlign_ConsoleOutput.txt.trimmed").exists()


def test_trim_missing_console_output(tmp_path: Path) -> None:
    assert not trim_console_output(tmp_path / "missing.txt")


#* --- MS-GF+ ---
MSGFPLUS_CONSOLE = (
    "MS-GF+ Release (v2019.07.03) (3 July 2019)\n"
    "Loading database files...\n"
    "Reading spectra...\n"
    "Ignoring spectrum scan 12; spectrum is not centroided\n"
    "Using 8 threads.\n"
    "Splitting work into 16 tasks.\n"
    "Spectrum 0-999 (total: 12345)\n"
    "pool-1-thread-2: Task 1 completed.\n"
    "pool-1-thread-3: Task 2 completed.\n"
    "Search progress: 2 / 16 tasks, 25.00%\t\t1.50 minutes elapsed\n"
)


def test_msgfplus_progress_and_counters() -> None:
    found = MSGFPlusConsoleParser().parse(MSGFPLUS_CONSOLE)
    assert found.version == "MS-GF+ Release (v2019.07.03) (3 July 2019)"
    assert found.progress == pytest.approx(0.25 * 0.96)
    assert found.facts["thread_count"] == 8
    assert found.facts["task_count"] == 16
    assert found.facts["spectra_searched"] == 12345
    assert found.facts["tasks_completed"] == 2
    assert found.facts["continuum_spectra_skipped"] == 1
    assert found.facts["elapsed_hours"] == pytest.approx(0.025)


def test_msgfplus_completion_caps_progress() -> None:
    parser = MSGFPlusConsoleParser()
    parser.parse(MSGFPLUS_CONSOLE)
    found = parser.parse("Computing q-values...\nMS-GF+ complete (total elapsed time: 2.10 min)\n", 11)
    assert found.progress == pytest.approx(0.96)
    assert found.completion_line == 12


def test_msgfplus_isotope_error_is_not_an_error() -> None:
    found = MSGFPlusConsoleParser().parse("a\nb\nc\nIsotopeError: -1,2\n")
    assert found.error_marker is None
    found = MSGFPlusConsoleParser().parse("a\nb\nc\nError reading FASTA file\n")
    assert found.error_marker == "Error reading FASTA file"


def test_msgfplus_reset_clears_counters() -> None:
    parser = MSGFPlusConsoleParser()
    parser.parse(MSGFPLUS_CONSOLE)
    parser.reset()
    assert parser.completed_tasks == set()
    assert parser.continuum_spectra_skipped == 0


#* --- MSConvert / mzRefiner ---
def test_mzrefiner_warnings_and_errors() -> None:
    found = MzRefinerConsoleParser().parse(
        "processing file: Dataset.mzML\n"
        "Low number of good identifications found. Will not perform dependent shifts.\n"
        'Excluding file "Dataset_msgfplus.mzid" from data set.\n'
        "writing output file: Dataset_FIXED.mzML\n"
    )
    assert found.facts["input_file"] == "Dataset.mzML"
    assert found.facts["output_file"] == "Dataset_FIXED.mzML"
    assert found.facts["warning"].startswith("Low number")
    assert "excluded" in found.facts
    assert found.error_marker is None

    found = MzRefinerConsoleParser().parse("Error: unable to open file\n")
    assert found.error_marker == "Error: unable to open file"


#* --- Generic ---
def test_generic_parser_configuration() -> None:
    parser = GenericConsoleParser("Charter", error_prefixes=("fatal",), error_substrings=("traceback",),
                                  completion_phrase="plots saved", version_prefix="PPMErrorCharter v")
    found = parser.parse("PPMErrorCharter v1.2.3\nerror? no\nPlots saved to disk\n")
    assert found.version == "PPMErrorCharter v1.2.3"
    assert found.completion_line == 3
    assert found.error_marker is None
    assert parser.parse("Traceback (most recent call last):\n").error_marker.startswith("Traceback")


#* --- PPMErrorCharter ---
def test_ppm_error_charter_median_mass_errors() -> None:
    output = (
        'Using fixed data file "/work/QC_Mam_19_01_FIXED.mzML"\n'
        "Statistic                   Original    Refined\n"
        "MeanMassErrorPPM:              2.430      1.361\n"
        "MedianMassErrorPPM:            1.782      0.704\n"
        "PPM Window for 99%:  low:    -19.216    -20.305\n"
    )
    found = PPMErrorCharterConsoleParser().parse(output)
    assert found.facts == {"mass_error_ppm": 1.782, "mass_error_ppm_refined": 0.704}
    assert found.error_marker is None


def test_ppm_error_charter_single_value_and_errors() -> None:
    found = PPMErrorCharterConsoleParser().parse("MedianMassErrorPPM:  -3.5\nError: mzid file is empty\n")
    assert found.facts == {"mass_error_ppm": -3.5}
    assert found.error_marker == "Error: mzid file is empty"
    assert PPMErrorCharterConsoleParser().parse("MedianMassErrorPPM:  n/a\n").facts == {}

import sys
from pathlib import Path

import pytest

from conftest import make_job, make_tool
from msrunner.tools import CloseoutStatus, MzRefineryRunner
from msrunner.tools.mzrefinery import find_unusable_reason, parse_refinement_stats

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fake tools are POSIX shell wrappers")

DATASET = "QC_Mam_19_01"


@pytest.fixture
def mzref_settings(settings, tmp_path: Path):
    bin_dir = tmp_path / "bin"
    settings.JAVA_PATH = make_tool(bin_dir, "fake_java.py", "java")
    settings.MSGFPLUS_JAR_PATH = bin_dir / "MSGFPlus.jar"
    settings.MSGFPLUS_JAR_PATH.write_bytes(b"jar")
    settings.MSCONVERT_PATH = make_tool(bin_dir, "fake_msconvert.py", "msconvert")
    settings.PPM_ERROR_CHARTER_PATH = make_tool(bin_dir, "fake_ppm_charter.py", "PPMErrorCharter")
    settings.MSGFPLUS_THREADS = 2
    return settings


@pytest.fixture(autouse=True)
def tool_modes(monkeypatch):
    for name in ("FAKE_MSGFPLUS_MODE", "FAKE_MSCONVERT_MODE", "FAKE_PPM_MODE"):
        monkeypatch.setenv(name, "ok")
    return monkeypatch


def _runner(work_dir: Path, settings, with_mzid: bool = False) -> MzRefineryRunner:
    (work_dir / f"{DATASET}.mzML").write_text("<mzML>" + "x" * 2000 + "</mzML>\n", encoding="utf-8")
    (work_dir / "proteins.fasta").write_text(">prot1\nMKV\n", encoding="utf-8")
    (work_dir / "MzRef_NoMods.txt").write_text("PrecursorMassTolerance=20ppm\n", encoding="utf-8")
    if with_mzid:
        (work_dir / f"{DATASET}_msgfplus.mzid").write_text("<MzIdentML/>\n", encoding="utf-8")
    job = make_job(work_dir, "MzRefinery", DATASET, FastaFile="proteins.fasta", MzRefParamFile="MzRef_NoMods.txt")
    return MzRefineryRunner(job, settings=settings)


def test_full_pipeline(work_dir: Path, mzref_settings) -> None:
    result = _runner(work_dir, mzref_settings).execute()

    assert result.status is CloseoutStatus.SUCCESS, result.message
    assert set(result.stage_results) == {"MSGFPlus", "MSConvert", "PPMErrorCharter"}
    assert result.progress == 99.0
    assert result.tool_version == "MS-GF+ Release (v2019.07.03) (3 July 2019)"
    assert work_dir / f"{DATASET}_FIXED.mzML" in result.result_files
    assert work_dir / f"{DATASET}_MZRefinery_MassErrors.png" in result.result_files
    assert work_dir / f"{DATASET}_MZRefinery_Histograms.png" in result.result_files
    assert result.stats["skipped_msgfplus"] is False
    assert result.stats["thread_count"] == 4
    assert result.stats["correction_mode"] == "scan time"
    assert result.stats["spec_evalue_threshold"] == pytest.approx(1e-10)
    assert result.stats["ms1_included"] == 4512
    assert result.stats["mass_error_ppm"] == pytest.approx(1.782)
    assert result.stats["mass_error_ppm_refined"] == pytest.approx(0.704)
    assert result.message == "Median mass error changed from 1.78 ppm to 0.70 ppm"

    console = (work_dir / "PPMErrorCharter_ConsoleOutput.txt").read_text(encoding="utf-8")
    assert "-EValue:1.000E-10" in console.splitlines()[0]


def test_msgfplus_command_line(work_dir: Path, mzref_settings) -> None:
    _runner(work_dir, mzref_settings).execute()
    command = (work_dir / "MSGFPlus_ConsoleOutput.txt").read_text(encoding="utf-8").splitlines()[0]
    assert "-Xmx4000M -jar" in command
    assert f"-s {work_dir / (DATASET + '.mzML')}" in command
    assert "-thread 2" in command


def test_existing_mzid_skips_msgfplus(work_dir: Path, mzref_settings) -> None:
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.SUCCESS, result.message
    assert "MSGFPlus" not in result.stage_results
    assert result.stats["skipped_msgfplus"] is True
    assert not (work_dir / "MSGFPlus_ConsoleOutput.txt").exists()

    assert "msconvert (modified " in result.tool_version
    assert "PPMErrorCharter (modified " in result.tool_version
    version_file = work_dir / "Tool_Version_Info_MzRefinery.txt"
    assert version_file in result.result_files
    assert "MSGFPlus.jar: " in version_file.read_text(encoding="utf-8")


def test_msgfplus_failure_stops_pipeline(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_MSGFPLUS_MODE", "error")
    result = _runner(work_dir, mzref_settings).execute()
    assert result.status is CloseoutStatus.FAILED
    assert "MSConvert" not in result.stage_results


def test_missing_mzid_after_search_fails(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_MSGFPLUS_MODE", "no_output")
    result = _runner(work_dir, mzref_settings).execute()
    assert result.status is CloseoutStatus.FAILED
    assert "_msgfplus.mzid" in result.message


def test_no_shift_uses_original_file(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_MSCONVERT_MODE", "no_shift")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.SUCCESS, result.message
    assert (work_dir / f"{DATASET}_FIXED.mzML").exists()
    assert not (work_dir / f"{DATASET}.mzML").exists()
    assert result.stats["correction_mode"] == "Chose no shift"


def test_no_high_resolution_data_is_unable_to_use(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_MSCONVERT_MODE", "no_high_res")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.UNABLE_TO_USE_MZ_REFINERY
    assert "PPMErrorCharter" not in result.stage_results
    note = work_dir / "NOTE - Orphan folder; safe to delete.txt"
    assert note in result.result_files
    assert len(note.read_text(encoding="utf-8").splitlines()) == 3


def test_no_significant_peak_still_makes_plots(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_MSCONVERT_MODE", "no_peak")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.UNABLE_TO_USE_MZ_REFINERY
    assert "PPMErrorCharter" in result.stage_results
    assert (work_dir / f"{DATASET}_MZRefinery_MassErrors.png").exists()
    console = (work_dir / "PPMErrorCharter_ConsoleOutput.txt").read_text(encoding="utf-8")
    assert f"-MzML:{work_dir / (DATASET + '.mzML')}" in console.splitlines()[0]


def test_bad_format_message_is_ignored_for_complete_file(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_MSCONVERT_MODE", "bad_format")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.SUCCESS, result.message


def test_msconvert_error_fails(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_MSCONVERT_MODE", "error")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.FAILED
    assert "MSConvert" in result.message


def test_missing_plots_fail(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_PPM_MODE", "no_plots")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.FAILED
    assert "PPMErrorCharter" in result.message


def test_missing_median_mass_error_fails(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_PPM_MODE", "no_stats")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.FAILED
    assert result.message == "Did not find 'MedianMassErrorPPM:' in the PPM Error Charter output"


def test_median_mass_error_needs_refined_value(work_dir: Path, mzref_settings, tool_modes) -> None:
    tool_modes.setenv("FAKE_PPM_MODE", "one_value")
    result = _runner(work_dir, mzref_settings, with_mzid=True).execute()
    assert result.status is CloseoutStatus.FAILED
    assert "with two values" in result.message
    assert "mass_error_ppm" not in result.stats


def test_find_unusable_reason() -> None:
    assert find_unusable_reason("all good") is None
    assert find_unusable_reason("No high-resolution data in input file")[1] is False
    assert find_unusable_reason("No significant peak (ppm error histogram) found")[1] is True
    reason, force_plots = find_unusable_reason("Less than 100 (16) values in identfile x.mzid pass the threshold")
    assert reason.startswith("Less than 100")
    assert not force_plots


def test_parse_refinement_stats_defaults(tmp_path: Path) -> None:
    empty = tmp_path / "empty.mzRefinement.tsv"
    empty.write_text("", encoding="utf-8")
    assert parse_refinement_stats(empty)["spec_evalue_threshold"] == 1e-10

    header_only = tmp_path / "header.mzRefinement.tsv"
    header_only.write_text("ThresholdValue\tMS1 Shift method\n", encoding="utf-8")
    assert parse_refinement_stats(header_only)["correction_mode"] == ""

    partial = tmp_path / "partial.mzRefinement.tsv"
    partial.write_text("ThresholdValue\tMS2 Shift method\tMS2 Final stDev\nMME <= 0.05\tm/z\t1.5\n", encoding="utf-8")
    stats = parse_refinement_stats(partial)
    assert stats["spec_evalue_threshold"] == 0.05
    assert stats["correction_mode"] == "m/z"
    assert stats["ms2_final_stdev"] == 1.5

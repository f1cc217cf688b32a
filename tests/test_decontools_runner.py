import sys
from pathlib import Path

import pytest

from conftest import make_job, make_tool
from msrunner.local.database import LogDBManager
from msrunner.tools import CloseoutStatus, DeconToolsRunner, ToolRunnerError
from msrunner.tools.decontools import results_file_has_data

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="fake tools are POSIX shell wrappers")

DATASET = "QC_Shew_20_01"


@pytest.fixture
def decon_settings(settings, tmp_path: Path):
    settings.DECONTOOLS_PATH = make_tool(tmp_path / "bin", "fake_decontools.py", "DeconConsole")
    settings.DECONTOOLS_FINISHED_GRACE_SECONDS = 0.5
    return settings


def _runner(work_dir: Path, settings, mode: str, **kwargs) -> DeconToolsRunner:
    (work_dir / f"{DATASET}.raw").write_bytes(b"raw data")
    (work_dir / "decon_params.xml").write_text(f"mode={mode}\n", encoding="utf-8")
    job = make_job(work_dir, "DeconTools", DATASET, ParamFile="decon_params.xml")
    return DeconToolsRunner(job, settings=settings, **kwargs)


def test_successful_run(work_dir: Path, decon_settings) -> None:
    result = _runner(work_dir, decon_settings, "ok").execute()
    assert result.status is CloseoutStatus.SUCCESS
    assert result.progress == 100.0
    assert work_dir / f"{DATASET}_isos.csv" in result.result_files
    assert work_dir / f"{DATASET}_log.txt" in result.result_files
    assert work_dir / "DeconTools_ConsoleOutput.txt" in result.result_files
    assert result.stats["current_scan"] == 300
    assert result.stats["accumulated_features"] == 600
    assert "finished_despite_exit_code" not in result.stats


def test_version_is_recorded_from_program_files(work_dir: Path, decon_settings) -> None:
    (decon_settings.DECONTOOLS_PATH.parent / "DeconTools.Backend.dll").write_bytes(b"MZ")
    result = _runner(work_dir, decon_settings, "ok").execute()

    assert result.tool_version.startswith("DeconConsole (modified ")
    assert "; DeconTools.Backend.dll (modified " in result.tool_version
    assert "UIMFLibrary.dll" not in result.tool_version
    version_file = work_dir / "Tool_Version_Info_DeconTools.txt"
    assert version_file in result.result_files
    lines = version_file.read_text(encoding="utf-8").splitlines()
    assert lines[3] == "Tool: DeconTools"
    assert lines[-1].startswith("DeconTools.Backend.dll: ")


def test_empty_results_are_no_data(work_dir: Path, decon_settings) -> None:
    result = _runner(work_dir, decon_settings, "empty").execute()
    assert result.status is CloseoutStatus.NO_DATA
    assert "_isos.csv" in result.message


def test_bad_error_log_fails(work_dir: Path, decon_settings) -> None:
    result = _runner(work_dir, decon_settings, "bad_error").execute()
    assert result.status is CloseoutStatus.FAILED
    assert "BAD_ERROR_log" in result.message


def test_finished_log_overrides_exit_code(work_dir: Path, decon_settings) -> None:
    result = _runner(work_dir, decon_settings, "exit_after_finish").execute()
    assert result.status is CloseoutStatus.SUCCESS
    assert result.stats["finished_despite_exit_code"] is True
    assert result.stage_results["DeconConsole"].exit_code == 3


def test_lingering_decontools_is_stopped(work_dir: Path, decon_settings) -> None:
    result = _runner(work_dir, decon_settings, "hang").execute()
    assert result.status is CloseoutStatus.SUCCESS
    assert result.stats["finished_despite_exit_code"] is True


def test_stale_log_is_removed_before_run(work_dir: Path, decon_settings) -> None:
    stale = work_dir / f"{DATASET}_log.txt"
    stale.write_text("01/01/2010 1:00:00 PM\tFinished file processing\n", encoding="utf-8")
    result = _runner(work_dir, decon_settings, "bad_error").execute()
    assert result.status is CloseoutStatus.FAILED
    assert "Finished" not in stale.read_text(encoding="utf-8")


def test_missing_input_fails(work_dir: Path, decon_settings) -> None:
    job = make_job(work_dir, "DeconTools", DATASET, ParamFile="decon_params.xml")
    result = DeconToolsRunner(job, settings=decon_settings).execute()
    assert result.status is CloseoutStatus.FAILED
    assert "input not found" in result.message


def test_missing_param_file_setting_fails(work_dir: Path, decon_settings) -> None:
    job = make_job(work_dir, "DeconTools", DATASET)
    result = DeconToolsRunner(job, settings=decon_settings).execute()
    assert result.status is CloseoutStatus.FAILED
    assert "ParamFile" in result.message


def test_unset_executable_raises(work_dir: Path, decon_settings) -> None:
    decon_settings.DECONTOOLS_PATH = ""
    with pytest.raises(ToolRunnerError):
        _runner(work_dir, decon_settings, "ok").execute()


def test_missing_executable_fails(work_dir: Path, decon_settings, tmp_path: Path) -> None:
    decon_settings.DECONTOOLS_PATH = tmp_path / "bin" / "not_installed"
    result = _runner(work_dir, decon_settings, "ok").execute()
    assert result.status is CloseoutStatus.FAILED
    assert "Unable to start" in result.message


def test_legacy_build_passes_file_type(work_dir: Path, decon_settings) -> None:
    job = make_job(work_dir, "DeconTools", DATASET, ParamFile="p.xml", DeconConsoleBuild=4100, FileType="Agilent_D")
    runner = DeconToolsRunner(job, settings=decon_settings)
    args = runner.build_arguments(work_dir / "x.raw", work_dir / "p.xml")
    assert args == [str(work_dir / "x.raw"), "Agilent_D", str(work_dir / "p.xml")]


def test_folder_dataset_log_location(work_dir: Path, decon_settings) -> None:
    folder = work_dir / f"{DATASET}.d"
    folder.mkdir()
    runner = DeconToolsRunner(make_job(work_dir, "DeconTools", DATASET), settings=decon_settings)
    assert runner.log_file_path(folder) == folder / f"{DATASET}_log.txt"
    assert runner.log_file_path(work_dir / f"{DATASET}.raw") == work_dir / f"{DATASET}_log.txt"


def test_stage_outcome_is_recorded(work_dir: Path, decon_settings, tmp_path: Path) -> None:
    log_db = LogDBManager(tmp_path / "logs.db")
    log_db.initialize_database()
    _runner(work_dir, decon_settings, "ok", log_db=log_db).execute()
    runs = log_db.fetch_recent_runs(10)
    assert len(runs) == 1
    assert runs[0].tool == "DeconTools"
    assert runs[0].stage == "DeconConsole"
    assert runs[0].outcome == "COMPLETED"


def test_results_file_has_data(tmp_path: Path) -> None:
    path = tmp_path / "x_isos.csv"
    path.write_text("a,b\n", encoding="utf-8")
    assert not results_file_has_data(path)
    path.write_text("a,b\n1,2\n", encoding="utf-8")
    assert results_file_has_data(path)
    path.write_text("", encoding="utf-8")
    assert not results_file_has_data(path)

import stat
import sys
from pathlib import Path

import pytest

from msrunner.local.config import MergedSettings
from msrunner.tools import JobParams

FIXTURES = Path(__file__).parent / "fixtures"


def fixture_script(name: str) -> Path:
    return FIXTURES / name


def make_tool(directory: Path, fixture: str, name: str = "") -> Path:
    """Creates an executable shell wrapper that runs a fixture script with this interpreter."""
    directory.mkdir(parents=True, exist_ok=True)
    wrapper = directory / (name or Path(fixture).stem)
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{fixture_script(fixture)}" "$@"\n', encoding="utf-8")
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@pytest.fixture
def settings(tmp_path: Path) -> MergedSettings:
    """Settings with fast supervision timings and an isolated overrides file."""
    merged = MergedSettings(overrides_path=tmp_path / "overrides.json")
    merged.POLL_INTERVAL_SECONDS = 0.05
    merged.MIN_POLL_INTERVAL_SECONDS = 0.01
    merged.MAX_RUNTIME_SECONDS = 60
    merged.MIN_MAX_RUNTIME_SECONDS = 1
    merged.MAX_IDLE_SECONDS = 0
    merged.GRACEFUL_SHUTDOWN_TIMEOUT = 5
    merged.WORK_DIR = tmp_path / "work"
    return merged


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


def make_job(work_dir: Path, tool: str, dataset: str = "QC_Shew_20_01", **parameters) -> JobParams:
    return JobParams(job="1234567", dataset=dataset, tool=tool, work_dir=work_dir, parameters=parameters)

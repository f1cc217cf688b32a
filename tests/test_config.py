import json
from pathlib import Path

import pytest

from msrunner.local.config import MergedSettings, coerce_setting


def test_defaults_are_loaded(tmp_path: Path) -> None:
    settings = MergedSettings(overrides_path=tmp_path / "overrides.json")
    assert settings.POLL_INTERVAL_SECONDS == 30
    assert settings.DECONTOOLS_FINISHED_GRACE_SECONDS == 120
    assert settings.get("NOT_A_SETTING", "default") == "default"
    assert "POLL_INTERVAL_SECONDS" in settings.as_dict()


def test_overrides_apply_only_to_modifiable_settings(tmp_path: Path) -> None:
    path = tmp_path / "overrides.json"
    path.write_text(json.dumps({
        "POLL_INTERVAL_SECONDS": "5",
        "JAVA_PATH": "/usr/lib/jvm/bin/java",
        "LOG_DB_PATH": "/tmp/elsewhere.db",
        "UNKNOWN_SETTING": 1,
    }), encoding="utf-8")
    settings = MergedSettings(overrides_path=path)
    assert settings.POLL_INTERVAL_SECONDS == 5
    assert settings.JAVA_PATH == Path("/usr/lib/jvm/bin/java")
    assert settings.LOG_DB_PATH != Path("/tmp/elsewhere.db")
    assert not hasattr(settings, "UNKNOWN_SETTING")


def test_malformed_overrides_file_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "overrides.json"
    path.write_text("{not json", encoding="utf-8")
    settings = MergedSettings(overrides_path=path)
    assert settings.POLL_INTERVAL_SECONDS == 30


def test_update_setting_persists(tmp_path: Path) -> None:
    path = tmp_path / "overrides.json"
    settings = MergedSettings(overrides_path=path)
    assert settings.update_setting("MSGFPLUS_STALL_MINUTES", "12") == 12
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["MSGFPLUS_STALL_MINUTES"] == 12
    assert MergedSettings(overrides_path=path).MSGFPLUS_STALL_MINUTES == 12

    with pytest.raises(KeyError):
        settings.update_setting("LOG_DB_PATH", "x.db")
    with pytest.raises(ValueError):
        settings.update_setting("MAX_RUNTIME_SECONDS", "forever")


def test_coerce_setting() -> None:
    assert coerce_setting(False, "yes") is True
    assert coerce_setting(10, "25") == 25
    assert coerce_setting(0.5, "2") == 2.0
    assert coerce_setting(Path("a"), "b/c") == Path("b/c")

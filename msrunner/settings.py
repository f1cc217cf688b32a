"""
This module contains almost all the configuration settings for msrunner.
It defines paths, external tool locations, supervision timings and logging configuration.
It is used throughout the package to ensure consistent settings and paths.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


def _env_path(name: str, default: pathlib.Path) -> pathlib.Path:
    value = os.getenv(name)
    return pathlib.Path(value) if value else default


#* --- Core Paths ---
BASE_DIR = _env_path("MSRUNNER_HOME", pathlib.Path.cwd())
WORK_DIR = _env_path("MSRUNNER_WORK_DIR", BASE_DIR / "work")
LOGS_DIR = _env_path("MSRUNNER_LOGS_DIR", BASE_DIR / "logs")
TOOLS_DIR = _env_path("MSRUNNER_TOOLS_DIR", BASE_DIR / "tools")

#* --- Application File Paths ---
LOG_DB_PATH = LOGS_DIR / "msrunner_logs.db"
OVERRIDES_JSON_PATH = BASE_DIR / "overrides.json"

#* --- External Executable Paths ---
DECONTOOLS_PATH = _env_path("DECONTOOLS_PATH", TOOLS_DIR / "DeconTools" / "DeconConsole.exe")
JAVA_PATH = _env_path("JAVA_PATH", pathlib.Path("java"))
MSALIGN_DIR = _env_path("MSALIGN_DIR", TOOLS_DIR / "MSAlign")
MSGFPLUS_JAR_PATH = _env_path("MSGFPLUS_JAR_PATH", TOOLS_DIR / "MSGFPlus" / "MSGFPlus.jar")
MSCONVERT_PATH = _env_path("MSCONVERT_PATH", TOOLS_DIR / "ProteoWizard" / "msconvert.exe")
PPM_ERROR_CHARTER_PATH = _env_path("PPM_ERROR_CHARTER_PATH", TOOLS_DIR / "MzRefinery" / "PPMErrorCharter.exe")

#* --- Supervision Settings ---
POLL_INTERVAL_SECONDS = 30
MIN_POLL_INTERVAL_SECONDS = 0.25
MAX_RUNTIME_SECONDS = 0          # 0 disables the runtime bound
MIN_MAX_RUNTIME_SECONDS = 15
MAX_IDLE_SECONDS = 0             # 0 disables the idle bound
GRACEFUL_SHUTDOWN_TIMEOUT = 10   # seconds before force-killing
DECONTOOLS_FINISHED_GRACE_SECONDS = 120
MSGFPLUS_STALL_MINUTES = 5

#* --- Tool Defaults ---
MSALIGN_JAVA_MEMORY_MB = 2000
MSGFPLUS_JAVA_MEMORY_MB = 4000
MIN_JAVA_MEMORY_MB = 512
MSGFPLUS_THREADS = os.cpu_count() or 1

#* --- Logging ---
VERBOSE_LOGGING = False

# Grafana Loki (for observability)
LOKI_ENABLED = _env_flag("LOKI_ENABLED")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- MODIFIABLE SETTINGS (Changeable at runtime via 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Supervision
    "POLL_INTERVAL_SECONDS", "MAX_RUNTIME_SECONDS", "MAX_IDLE_SECONDS",
    "GRACEFUL_SHUTDOWN_TIMEOUT", "DECONTOOLS_FINISHED_GRACE_SECONDS", "MSGFPLUS_STALL_MINUTES",
    # Tools
    "MSALIGN_JAVA_MEMORY_MB", "MSGFPLUS_JAVA_MEMORY_MB", "MSGFPLUS_THREADS",
    "DECONTOOLS_PATH", "JAVA_PATH", "MSALIGN_DIR", "MSGFPLUS_JAR_PATH",
    "MSCONVERT_PATH", "PPM_ERROR_CHARTER_PATH",
    # Logging
    "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL",
    "MAX_LOG_DB_SIZE_MB", "LOG_DB_SIZE_CHECK_INTERVAL_SECONDS", "LOG_HISTORY_COUNT",
}

#* --- Default Values for Modifiable Settings ---
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10
MAX_LOG_DB_SIZE_MB = 100
LOG_DB_SIZE_CHECK_INTERVAL_SECONDS = 12 * 3600 # 12 hours
LOG_HISTORY_COUNT = 50

#* --- Executable settings checked by 'check-config' ---
TOOL_EXECUTABLE_SETTINGS = {
    "DeconTools": "DECONTOOLS_PATH",
    "Java": "JAVA_PATH",
    "MSAlign": "MSALIGN_DIR",
    "MS-GF+": "MSGFPLUS_JAR_PATH",
    "MSConvert": "MSCONVERT_PATH",
    "PPMErrorCharter": "PPM_ERROR_CHARTER_PATH",
}

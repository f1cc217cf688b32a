import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from msrunner.local import effective_settings as config

log = logging.getLogger(__name__)


class JobParamsError(Exception):
    """Raised when a job file is missing, malformed or holds an unusable value."""


class JobParams:
    """
    The parameters of one analysis job, loaded from a YAML job file.

    Example job file::

        job: 1234567
        dataset: QC_Shew_20_01_R01
        tool: MzRefinery
        work_dir: /data/work/job1234567
        parameters:
          MzRefParamFile: MzRef_NoMods.txt
          FastaFile: Shewanella.fasta
    """

    def __init__(self, job: str, dataset: str, tool: str, work_dir: Path,
                 parameters: Optional[Dict[str, Any]] = None, source_path: Optional[Path] = None):
        self.job = str(job)
        self.dataset = dataset
        self.tool = tool
        self.work_dir = Path(work_dir)
        self.parameters: Dict[str, Any] = dict(parameters or {})
        self.source_path = source_path

    @classmethod
    def from_yaml(cls, path: Path) -> "JobParams":
        """
        Loads a job file.

        :param path: Path to the YAML job file.
        :return: The parsed JobParams.
        :raises JobParamsError: If the file cannot be read or lacks required keys.
        """
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise JobParamsError(f"Job file not found: {path}") from e
        except (OSError, yaml.YAMLError) as e:
            raise JobParamsError(f"Could not read job file '{path}': {e}") from e

        if not isinstance(data, dict):
            raise JobParamsError(f"Job file '{path}' must contain a mapping")

        missing = [key for key in ("job", "dataset", "tool") if not data.get(key)]
        if missing:
            raise JobParamsError(f"Job file '{path}' is missing required keys: {', '.join(missing)}")

        parameters = data.get("parameters") or {}
        if not isinstance(parameters, dict):
            raise JobParamsError(f"'parameters' in job file '{path}' must be a mapping")

        work_dir = Path(data.get("work_dir") or Path(config.WORK_DIR) / f"job{data['job']}")
        if not work_dir.is_absolute():
            work_dir = (path.parent / work_dir).resolve()

        log.debug(f"Loaded job {data['job']} ({data['tool']}) from {path}")
        return cls(data["job"], str(data["dataset"]), str(data["tool"]), work_dir, parameters, path)

    def __contains__(self, name: str) -> bool:
        return name in self.parameters

    def get(self, name: str, default: Any = None) -> Any:
        """
        Returns a job parameter converted to the type of default.

        Missing or blank values return default. Booleans accept true/false and
        integers (non-zero is true). An unparsable float falls back to default.

        :raises JobParamsError: If an int or bool parameter cannot be converted.
        """
        value = self.parameters.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return default
        if default is None:
            return value

        if isinstance(default, bool):
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ("true", "false"):
                return text == "true"
            try:
                return int(text) != 0
            except ValueError as e:
                raise JobParamsError(f"Job parameter '{name}' is not a boolean: {value!r}") from e
        if isinstance(default, int):
            try:
                return int(str(value).strip())
            except ValueError as e:
                raise JobParamsError(f"Job parameter '{name}' is not an integer: {value!r}") from e
        if isinstance(default, float):
            try:
                return float(value)
            except (TypeError, ValueError):
                return default
        if isinstance(default, Path):
            return Path(str(value))
        return str(value)

    def require(self, name: str) -> str:
        """Returns a string parameter, raising JobParamsError if it is missing."""
        value = self.get(name, "")
        if not value:
            raise JobParamsError(f"Job parameter '{name}' is not defined for job {self.job}")
        return value

    def __repr__(self) -> str:
        return f"JobParams(job={self.job!r}, dataset={self.dataset!r}, tool={self.tool!r})"

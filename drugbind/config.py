"""Runtime configuration loader for the DrugBind batch backend."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


CONFIG_ENV_VAR = "DRUGBIND_CONFIG"
PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "cfg" / "drugbind.yaml"
DEFAULT_LOCAL_CONFIG_PATH = PROJECT_ROOT / "cfg" / "drugbind.local.yaml"

CANCEL_MODES = {"abandon", "settle"}
_TRUTHY = {"1", "true", "yes", "y", "on"}
_ENV_VAR_RE = re.compile(r"\$(\w+)|\${([^}]+)}")


def _expand_env_vars(text: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        var = match.group(1) or match.group(2)
        if var and var in os.environ:
            return os.environ[var]
        return match.group(0)

    expanded = _ENV_VAR_RE.sub(_replace, text)
    return os.path.expanduser(expanded)


def _expand_env_in_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _expand_env_in_value(val) for key, val in value.items()}
    if isinstance(value, list):
        return [_expand_env_in_value(val) for val in value]
    if isinstance(value, str):
        return _expand_env_vars(value)
    return value


@dataclass(slots=True)
class BatchSettings:
    max_concurrent: int = 3
    row_timeout_seconds: float = 60.0
    cancel_mode: str = "abandon"
    pk_min: float = 0.0
    pk_max: float = 14.0

    def __post_init__(self) -> None:
        if isinstance(self.max_concurrent, str) and self.max_concurrent.strip():
            self.max_concurrent = int(self.max_concurrent)
        if isinstance(self.row_timeout_seconds, str) and self.row_timeout_seconds.strip():
            self.row_timeout_seconds = float(self.row_timeout_seconds)
        for attr in ("pk_min", "pk_max"):
            value = getattr(self, attr)
            if isinstance(value, str) and value.strip():
                setattr(self, attr, float(value))
        if self.max_concurrent < 1:
            raise ValueError("batch.max_concurrent must be at least 1")
        if self.row_timeout_seconds <= 0:
            raise ValueError("batch.row_timeout_seconds must be positive")
        if self.pk_min >= self.pk_max:
            raise ValueError("batch.pk_min must be lower than batch.pk_max")
        mode = str(self.cancel_mode or "abandon").strip().lower()
        if mode not in CANCEL_MODES:
            raise ValueError(f"batch.cancel_mode must be one of {sorted(CANCEL_MODES)}")
        self.cancel_mode = mode


@dataclass(slots=True)
class PredictorConfig:
    base_url: Optional[str] = None
    api_token: Optional[str] = None
    timeout_seconds: float = 60.0
    simulated_latency_seconds: float = 0.0

    def __post_init__(self) -> None:
        if isinstance(self.base_url, str):
            self.base_url = self.base_url.strip().rstrip("/") or None
        if isinstance(self.api_token, str):
            self.api_token = self.api_token.strip() or None
        if isinstance(self.timeout_seconds, str) and self.timeout_seconds.strip():
            self.timeout_seconds = float(self.timeout_seconds)
        if isinstance(self.simulated_latency_seconds, str) and self.simulated_latency_seconds.strip():
            self.simulated_latency_seconds = float(self.simulated_latency_seconds)

    @property
    def simulated(self) -> bool:
        return self.base_url is None


@dataclass(slots=True)
class AppPaths:
    project_root: Path = field(default_factory=lambda: PROJECT_ROOT)
    state_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if isinstance(self.project_root, str):
            self.project_root = Path(self.project_root).expanduser()
        if not self.project_root.is_absolute():
            self.project_root = (Path.cwd() / self.project_root).resolve()
        if isinstance(self.state_dir, str) and self.state_dir.strip():
            self.state_dir = Path(self.state_dir).expanduser()
        elif isinstance(self.state_dir, str):
            self.state_dir = None
        if self.state_dir is None:
            self.state_dir = self.project_root / "state"
        if not self.state_dir.is_absolute():
            self.state_dir = (self.project_root / self.state_dir).resolve()

    @property
    def history_path(self) -> Path:
        return self.state_dir / "prediction_history.json"

    @property
    def jobs_dir(self) -> Path:
        return self.state_dir / "jobs"


@dataclass(slots=True)
class DrugBindConfig:
    paths: AppPaths = field(default_factory=AppPaths)
    predictor: PredictorConfig = field(default_factory=PredictorConfig)
    batch: BatchSettings = field(default_factory=BatchSettings)
    log_dir: Path = field(default_factory=lambda: Path.cwd() / "logs" / "drugbind")
    log_level: str = "INFO"
    background_concurrency: int = 4

    def ensure_dirs(self) -> None:
        for path in [self.log_dir, self.paths.state_dir]:
            if path:
                path.mkdir(parents=True, exist_ok=True)


def _deep_update(dest: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in src.items():
        if isinstance(value, dict) and isinstance(dest.get(key), dict):
            dest[key] = _deep_update(dest[key], value)
        else:
            dest[key] = value
    return dest


def _load_yaml_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return _expand_env_in_value(data)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def config_from_dict(data: Dict[str, Any]) -> DrugBindConfig:
    cfg = DrugBindConfig(
        paths=AppPaths(**_section(data, "paths")),
        predictor=PredictorConfig(**_section(data, "predictor")),
        batch=BatchSettings(**_section(data, "batch")),
    )
    if data.get("log_dir"):
        cfg.log_dir = Path(data["log_dir"]).expanduser()
    if data.get("log_level"):
        cfg.log_level = str(data["log_level"]).upper()
    if data.get("background_concurrency"):
        cfg.background_concurrency = max(1, int(data["background_concurrency"]))
    return cfg


def _env_overrides(env: Dict[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if state_dir := env.get("DRUGBIND_STATE_DIR"):
        overrides.setdefault("paths", {})["state_dir"] = state_dir
    if log_dir := env.get("DRUGBIND_LOG_DIR"):
        overrides["log_dir"] = log_dir
    if log_level := env.get("DRUGBIND_LOG_LEVEL"):
        overrides["log_level"] = log_level
    if url := env.get("DRUGBIND_PREDICTOR_URL"):
        overrides.setdefault("predictor", {})["base_url"] = url
    if token := env.get("DRUGBIND_PREDICTOR_TOKEN"):
        overrides.setdefault("predictor", {})["api_token"] = token
    if simulated := env.get("DRUGBIND_SIMULATED"):
        if simulated.strip().lower() in _TRUTHY:
            overrides.setdefault("predictor", {})["base_url"] = ""
    if max_concurrent := env.get("DRUGBIND_MAX_CONCURRENT"):
        overrides.setdefault("batch", {})["max_concurrent"] = max_concurrent
    if row_timeout := env.get("DRUGBIND_ROW_TIMEOUT"):
        overrides.setdefault("batch", {})["row_timeout_seconds"] = row_timeout
    if cancel_mode := env.get("DRUGBIND_CANCEL_MODE"):
        overrides.setdefault("batch", {})["cancel_mode"] = cancel_mode
    return overrides


@lru_cache(maxsize=1)
def load_config() -> DrugBindConfig:
    """Load configuration from defaults → YAML files → environment overrides."""
    merged: Dict[str, Any] = {
        "paths": {"project_root": str(PROJECT_ROOT)},
        "predictor": {},
        "batch": {},
    }

    cfg_path_env = os.getenv(CONFIG_ENV_VAR)
    if cfg_path_env:
        cfg_paths = [Path(cfg_path_env).expanduser()]
    else:
        cfg_paths = [DEFAULT_CONFIG_PATH, DEFAULT_LOCAL_CONFIG_PATH]

    for path in cfg_paths:
        merged = _deep_update(merged, _load_yaml_config(path))
    merged = _deep_update(merged, _env_overrides(dict(os.environ)))

    cfg = config_from_dict(merged)
    cfg.ensure_dirs()
    return cfg


__all__ = [
    "AppPaths",
    "BatchSettings",
    "DrugBindConfig",
    "PredictorConfig",
    "CANCEL_MODES",
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_LOCAL_CONFIG_PATH",
    "config_from_dict",
    "load_config",
]

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

DEFAULT_CONFIG_PATH = "stackforge.yaml"

# Environment variables that override file settings, mapped to config keys.
ENV_OVERRIDES = {
    "LOGFILE": "log_file",
    "VERBOSE": "verbose",
    "LOGDAYS": "log_days",
    "LOGDIR": "log_dir",
    "DEST": "dest",
    "OFFLINE": "offline",
    "RECLONE": "reclone",
}


def trueorfalse(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v in {"1", "yes", "true", "on", "y", "t"}:
        return True
    if v in {"0", "no", "false", "off", "n", "f"}:
        return False
    return default


@dataclass(frozen=True)
class RunConfig:
    raw: Dict[str, Any]

    @property
    def log_file(self) -> Optional[str]:
        v = self.raw.get("log_file")
        return str(v) if v else None

    @property
    def log_dir(self) -> Optional[str]:
        v = self.raw.get("log_dir")
        if v:
            return str(v)
        return str(Path(self.log_file).parent) if self.log_file else None

    @property
    def verbose(self) -> bool:
        return trueorfalse(self.raw.get("verbose"), True)

    @property
    def verbose_no_timestamp(self) -> bool:
        return trueorfalse(self.raw.get("verbose_no_timestamp"), False)

    @property
    def log_days(self) -> int:
        return int(self.raw.get("log_days") or 7)

    @property
    def timestamp_format(self) -> str:
        return str(self.raw.get("timestamp_format") or "%Y-%m-%d-%H%M%S")

    @property
    def dest(self) -> str:
        return str(self.raw.get("dest") or "/opt/stack")

    @property
    def offline(self) -> bool:
        return trueorfalse(self.raw.get("offline"), False)

    @property
    def reclone(self) -> bool:
        return trueorfalse(self.raw.get("reclone"), False)

    @property
    def state_file(self) -> str:
        return str(self.raw.get("state_file") or ".stackenv")

    @property
    def diagnostics_command(self) -> Optional[str]:
        return (self.raw.get("diagnostics") or {}).get("command", "worlddump")

    @property
    def results_command(self) -> Optional[str]:
        return (self.raw.get("results") or {}).get("command", "generate-subunit")

    @property
    def results_output(self) -> Optional[str]:
        v = (self.raw.get("results") or {}).get("output")
        if v:
            return str(v)
        return str(Path(self.log_dir) / "stackforge.subunit") if self.log_dir else None

    @property
    def allow_root(self) -> bool:
        return trueorfalse((self.raw.get("preflight") or {}).get("allow_root"), False)

    @property
    def allow_virtualenv(self) -> bool:
        return trueorfalse((self.raw.get("preflight") or {}).get("allow_virtualenv"), False)

    @property
    def marker_file(self) -> str:
        return str((self.raw.get("preflight") or {}).get("marker_file") or "~/.no-stackforge")

    @property
    def plugins(self) -> List[Dict[str, Any]]:
        items = self.raw.get("plugins") or []
        if not isinstance(items, list):
            raise ValueError("plugins must be a list of mappings")
        return [dict(p) for p in items]

    @property
    def settings(self) -> Dict[str, Any]:
        return dict(self.raw.get("settings") or {})

    def with_overrides(self, overrides: Mapping[str, Any]) -> "RunConfig":
        raw = dict(self.raw)
        raw.update({k: v for k, v in overrides.items() if v is not None})
        return RunConfig(raw=raw)


def env_overrides(environ: Mapping[str, str] = os.environ) -> Dict[str, Any]:
    return {key: environ[var] for var, key in ENV_OVERRIDES.items() if var in environ}


def load_run_config(path: str, *, environ: Mapping[str, str] = os.environ) -> RunConfig:
    """Load YAML run settings, then apply environment overrides."""

    p = Path(path)
    raw: Dict[str, Any] = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{path} must contain a mapping/object")

    return RunConfig(raw=raw).with_overrides(env_overrides(environ))

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, MutableMapping, Optional

import yaml

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions (.stackenv included).
    return "json"


class InstallContext(MutableMapping[str, Any]):
    """Ordered key/value store shared by every hook of a run.

    Hooks see each other's writes in execution order; this object is the
    only channel between plugins and between plugins and the core.
    """

    def __init__(
        self,
        values: Optional[Dict[str, Any]] = None,
        *,
        announce: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._data: Dict[str, Any] = dict(values or {})
        self._announce = announce
        self.phase: Optional[str] = None
        self.plugin: Optional[str] = None

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"InstallContext(phase={self.phase!r}, keys={list(self._data)!r})"

    def announce(self, msg: str) -> None:
        """Send a progress line to the summary log (no-op without a router)."""
        if self._announce is not None:
            self._announce(msg)
        else:
            logger.info("%s", msg)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def save(self, path: str) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)

        if _detect_format(p) == "json":
            p.write_text(json.dumps(self._data, indent=2, default=str) + "\n", encoding="utf-8")
        else:
            p.write_text(yaml.safe_dump(json.loads(json.dumps(self._data, default=str)), sort_keys=False), encoding="utf-8")

    @classmethod
    def load(cls, path: str) -> "InstallContext":
        p = Path(path)
        if not p.exists():
            return cls()

        if _detect_format(p) == "json":
            data = json.loads(p.read_text(encoding="utf-8"))
        else:
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Context file must be an object/dict, got {type(data)}")
        return cls(data)

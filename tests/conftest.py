"""
Pytest fixtures for the stackforge installer test suite.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from stackforge_installer.plugins import PluginCatalog, PluginSpec
from stackforge_installer.run_config import RunConfig


@pytest.fixture
def run_config(tmp_path: Path) -> Callable[..., RunConfig]:
    """Build a RunConfig rooted in tmp_path, with external collaborators off."""

    def _make(**overrides: Any) -> RunConfig:
        raw: Dict[str, Any] = {
            "log_file": str(tmp_path / "logs" / "stack.log"),
            "verbose": False,
            "dest": str(tmp_path / "dest"),
            "state_file": str(tmp_path / ".stackenv"),
            "diagnostics": {"command": None},
            "results": {"command": None},
            "preflight": {
                "allow_root": True,
                "allow_virtualenv": True,
                "marker_file": str(tmp_path / "no-stackforge"),
            },
        }
        raw.update(overrides)
        return RunConfig(raw=raw)

    return _make


@pytest.fixture
def calls() -> List[str]:
    return []


@pytest.fixture
def make_catalog(calls: List[str]) -> Callable[..., PluginCatalog]:
    """Catalog of in-process plugins whose hooks record ``plugin:phase`` in ``calls``.

    ``make_catalog(a=["install"], b={"install": 17})`` registers a then b; a
    dict value maps a phase to the status its hook returns.
    """

    def _hook(name: str, phase: str, rc: Optional[int]):
        def hook(ctx):
            calls.append(f"{name}:{phase}")
            return rc

        return hook

    def _make(**plugins: Any) -> PluginCatalog:
        catalog = PluginCatalog()
        for name, phases in plugins.items():
            if not isinstance(phases, dict):
                phases = {p: None for p in phases}
            hooks = {phase: _hook(name, phase, rc) for phase, rc in phases.items()}
            catalog.register(PluginSpec(name=name, hooks=hooks))
        return catalog

    return _make

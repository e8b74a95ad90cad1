from __future__ import annotations

import importlib.util
import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .context import InstallContext
from .faults import FetchError
from .lib.command import CommandError, run_cmd
from .pipeline import PHASES, Phase, phase_name
from .run_config import RunConfig

logger = logging.getLogger(__name__)

PLUGIN_MODULE = "stackforge_plugin.py"

Hook = Callable[[InstallContext], Optional[int]]


@dataclass(frozen=True)
class PluginSpec:
    name: str
    repo: Optional[str] = None
    ref: str = "master"
    path: Optional[str] = None
    enabled: bool = True
    hooks: Optional[Mapping[str, Hook]] = None


@dataclass(frozen=True)
class Plugin:
    name: str
    order: int
    repo: Optional[str] = None
    ref: str = "master"
    path: Optional[str] = None
    enabled: bool = True
    hooks: Mapping[str, Hook] = field(default_factory=dict)

    def hook(self, phase: str) -> Optional[Hook]:
        return self.hooks.get(phase)


def hooks_from_module(module: ModuleType) -> Dict[str, Hook]:
    """Collect phase hooks from a plugin module.

    A module either exposes ``HOOKS = {"install": fn, ...}`` or defines
    functions named after phases (``pre_install`` for ``pre-install``).
    """

    explicit = getattr(module, "HOOKS", None)
    if explicit is not None:
        unknown = set(explicit) - {p.name for p in PHASES}
        if unknown:
            raise ValueError(f"unknown phase(s) in HOOKS: {', '.join(sorted(unknown))}")
        return dict(explicit)

    hooks: Dict[str, Hook] = {}
    for phase in PHASES:
        fn = getattr(module, phase.name.replace("-", "_"), None)
        if callable(fn):
            hooks[phase.name] = fn
    return hooks


class PluginCatalog:
    """Registry of plugins, kept in the order they were first registered."""

    def __init__(self, *, dest: str = "/opt/stack", offline: bool = False, reclone: bool = False) -> None:
        self.dest = dest
        self.offline = offline
        self.reclone = reclone
        self._plugins: Dict[str, Plugin] = {}
        self._next_order = 0

    @classmethod
    def from_config(cls, cfg: RunConfig) -> "PluginCatalog":
        catalog = cls(dest=cfg.dest, offline=cfg.offline, reclone=cfg.reclone)
        for entry in cfg.plugins:
            if not entry.get("name") or not entry.get("repo"):
                raise ValueError(f"plugin entries need a name and a repo: {entry!r}")
            catalog.register(
                PluginSpec(
                    name=str(entry["name"]),
                    repo=str(entry["repo"]),
                    ref=str(entry.get("ref") or "master"),
                    path=entry.get("path"),
                    enabled=bool(entry.get("enabled", True)),
                )
            )
        return catalog

    @property
    def plugins(self) -> List[Plugin]:
        return list(self._plugins.values())

    def get(self, name: str) -> Plugin:
        return self._plugins[name]

    def register(self, spec: PluginSpec) -> Plugin:
        existing = self._plugins.get(spec.name)
        if existing is not None:
            # Same slot, same order: a redefinition never moves a plugin.
            order = existing.order
            logger.info("Plugin %s registered again; replacing definition", spec.name)
        else:
            order = self._next_order
            self._next_order += 1

        path = spec.path or str(Path(self.dest) / spec.name)
        plugin = Plugin(
            name=spec.name,
            order=order,
            repo=spec.repo,
            ref=spec.ref,
            path=path,
            enabled=spec.enabled,
            hooks=dict(spec.hooks or {}),
        )
        self._plugins[spec.name] = plugin
        return plugin

    def materialize(self, plugin: Plugin) -> None:
        """Fetch the plugin source at its pinned ref. Failure is final."""

        if not plugin.repo:
            return
        dest = Path(plugin.path)
        try:
            if not dest.exists():
                if self.offline:
                    raise FetchError(plugin.name, f"{dest} is missing and offline mode is set")
                logger.info("Cloning plugin %s from %s (%s)", plugin.name, plugin.repo, plugin.ref)
                run_cmd(["git", "clone", plugin.repo, str(dest)])
                run_cmd(["git", "-C", str(dest), "checkout", plugin.ref])
            elif self.reclone and not self.offline:
                logger.info("Refreshing plugin %s at %s", plugin.name, plugin.ref)
                run_cmd(["git", "-C", str(dest), "fetch", plugin.repo, plugin.ref])
                run_cmd(["git", "-C", str(dest), "checkout", "FETCH_HEAD"])
        except CommandError as e:
            raise FetchError(plugin.name, str(e), e.returncode) from e
        except OSError as e:
            raise FetchError(plugin.name, f"cannot run git: {e}") from e

    def discover(self, plugin: Plugin) -> Plugin:
        """Load the plugin module from its materialized path and bind its hooks."""

        if plugin.hooks or not plugin.repo:
            return plugin

        module_path = Path(plugin.path) / PLUGIN_MODULE
        if not module_path.is_file():
            raise FetchError(plugin.name, f"{module_path} not found")

        mod_name = "stackforge_plugins." + re.sub(r"\W", "_", plugin.name)
        spec = importlib.util.spec_from_file_location(mod_name, module_path)
        if spec is None or spec.loader is None:
            raise FetchError(plugin.name, f"cannot load {module_path}")
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
            hooks = hooks_from_module(module)
        except Exception as e:
            raise FetchError(plugin.name, f"cannot load {module_path}: {e}") from e

        loaded = replace(plugin, hooks=hooks)
        self._plugins[plugin.name] = loaded
        logger.info("Plugin %s provides: %s", plugin.name, ", ".join(hooks) or "(no hooks)")
        return loaded

    def materialize_all(self) -> None:
        for plugin in self.plugins:
            if not plugin.enabled:
                logger.info("Plugin %s is disabled; not fetching", plugin.name)
                continue
            self.materialize(plugin)

    def prepare(self) -> None:
        """Fetch every enabled plugin, then load their hooks, in order.

        All sources are in place before any plugin module is imported.
        """
        self.materialize_all()
        for plugin in self.plugins:
            if plugin.enabled:
                self.discover(plugin)

    def hooks_for(self, phase: "Phase | str") -> List[Tuple[Plugin, Hook]]:
        name = phase_name(phase)
        out: List[Tuple[Plugin, Hook]] = []
        for plugin in self._plugins.values():
            if not plugin.enabled:
                continue
            hook = plugin.hook(name)
            if hook is None:
                logger.debug("plugin %s does not implement phase %s", plugin.name, name)
                continue
            out.append((plugin, hook))
        return out

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {"name": p.name, "order": p.order, "repo": p.repo, "ref": p.ref, "path": p.path, "enabled": p.enabled}
            for p in self.plugins
        ]

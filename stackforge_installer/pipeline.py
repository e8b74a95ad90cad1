from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from .context import InstallContext
from .faults import HookFailure, InstallerError
from .lib.command import CmdResult, CommandError, fmt_argv

if TYPE_CHECKING:
    from .plugins import PluginCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Phase:
    name: str
    position: int


PHASES: Tuple[Phase, ...] = tuple(
    Phase(name, i)
    for i, name in enumerate(
        [
            "override-defaults",
            "source",
            "pre-install",
            "install",
            "post-config",
            "extra",
            "test-config",
        ]
    )
)


def phase_name(phase: Union[Phase, str]) -> str:
    name = phase.name if isinstance(phase, Phase) else str(phase)
    if name not in {p.name for p in PHASES}:
        raise ValueError(f"Unknown phase: {name}")
    return name


def hook_status(rc: object) -> int:
    """Status for a hook return value: None and 0 pass, CmdResult uses its returncode."""

    if rc is None:
        return 0
    if isinstance(rc, CmdResult):
        return rc.returncode
    if isinstance(rc, int):
        return rc
    logger.warning("Hook returned %r; expected None or an int status", rc)
    return 1


@dataclass
class PhaseRunResult:
    completed_phases: List[str] = field(default_factory=list)
    ran_hooks: List[Tuple[str, str]] = field(default_factory=list)


class PhaseScheduler:
    """Drive the fixed phase sequence over the registered plugins.

    Hooks run one at a time, in registration order, against one shared
    context. The first failure stops everything: no retry, no rollback.
    """

    def __init__(
        self,
        catalog: "PluginCatalog",
        *,
        on_phase_done: Optional[Callable[[Phase, InstallContext], None]] = None,
    ) -> None:
        self.catalog = catalog
        self.on_phase_done = on_phase_done

    def run_phase(self, phase: Union[Phase, str], ctx: InstallContext) -> List[str]:
        name = phase_name(phase)
        ran: List[str] = []
        hooks = self.catalog.hooks_for(name)
        logger.info("Running phase %s (%d hook(s))", name, len(hooks))

        ctx.phase = name
        for plugin, hook in hooks:
            ctx.plugin = plugin.name
            logger.info("Running %s hook of plugin %s", name, plugin.name)
            try:
                rc = hook(ctx)
            except CommandError as e:
                raise HookFailure(name, plugin.name, e.returncode, command=fmt_argv(e.argv)) from e
            except InstallerError:
                raise
            except SystemExit as e:
                raise HookFailure(name, plugin.name, e.code if isinstance(e.code, int) else 1) from e
            except Exception as e:
                logger.exception("Hook %s:%s raised", plugin.name, name)
                raise HookFailure(name, plugin.name, 1) from e
            status = hook_status(rc)
            if status:
                raise HookFailure(name, plugin.name, status)
            ran.append(plugin.name)

        ctx.plugin = None
        ctx.setdefault("completed_phases", []).append(name)
        return ran

    def run_phases(self, ctx: InstallContext) -> PhaseRunResult:
        result = PhaseRunResult()
        for phase in PHASES:
            ran = self.run_phase(phase, ctx)
            result.completed_phases.append(phase.name)
            result.ran_hooks.extend((phase.name, name) for name in ran)
            if self.on_phase_done is not None:
                self.on_phase_done(phase, ctx)
        ctx.phase = None
        return result

"""
Tests for the plugin catalog: registration, fetching and hook discovery.
"""

import textwrap
from pathlib import Path

import pytest

from stackforge_installer import plugins as plugins_mod
from stackforge_installer.faults import FetchError
from stackforge_installer.lib.command import CmdResult, CommandError
from stackforge_installer.plugins import PluginCatalog, PluginSpec
from stackforge_installer.run_config import RunConfig


def _noop(ctx):
    return None


class TestRegister:
    def test_order_follows_encounter(self):
        catalog = PluginCatalog()
        for name in ["zeta", "alpha", "mid"]:
            catalog.register(PluginSpec(name=name))
        assert [p.name for p in catalog.plugins] == ["zeta", "alpha", "mid"]
        assert [p.order for p in catalog.plugins] == [0, 1, 2]

    def test_duplicate_name_overwrites_in_place(self):
        catalog = PluginCatalog()
        catalog.register(PluginSpec(name="a", ref="v1"))
        catalog.register(PluginSpec(name="b"))
        catalog.register(PluginSpec(name="a", ref="v2"))

        assert [p.name for p in catalog.plugins] == ["a", "b"]
        assert catalog.get("a").ref == "v2"
        assert catalog.get("a").order == 0

    def test_default_path_under_dest(self, tmp_path):
        catalog = PluginCatalog(dest=str(tmp_path))
        plugin = catalog.register(PluginSpec(name="queue", repo="https://example.org/queue.git"))
        assert plugin.path == str(tmp_path / "queue")

    def test_disabled_plugins_have_no_hooks(self):
        catalog = PluginCatalog()
        catalog.register(PluginSpec(name="a", hooks={"install": _noop}, enabled=False))
        catalog.register(PluginSpec(name="b", hooks={"install": _noop}))
        assert [p.name for p, _ in catalog.hooks_for("install")] == ["b"]

    def test_from_config(self, tmp_path):
        cfg = RunConfig(
            raw={
                "dest": str(tmp_path),
                "plugins": [
                    {"name": "db", "repo": "https://example.org/db.git", "ref": "stable/1"},
                    {"name": "mq", "repo": "https://example.org/mq.git", "enabled": False},
                ],
            }
        )
        catalog = PluginCatalog.from_config(cfg)
        assert catalog.describe() == [
            {"name": "db", "order": 0, "repo": "https://example.org/db.git", "ref": "stable/1",
             "path": str(tmp_path / "db"), "enabled": True},
            {"name": "mq", "order": 1, "repo": "https://example.org/mq.git", "ref": "master",
             "path": str(tmp_path / "mq"), "enabled": False},
        ]

    def test_from_config_requires_repo(self):
        with pytest.raises(ValueError):
            PluginCatalog.from_config(RunConfig(raw={"plugins": [{"name": "db"}]}))


class TestMaterialize:
    def test_clone_then_checkout_ref(self, tmp_path, monkeypatch):
        seen = []
        monkeypatch.setattr(plugins_mod, "run_cmd", lambda argv, **kw: seen.append(argv) or CmdResult(argv, 0, "", ""))
        catalog = PluginCatalog(dest=str(tmp_path))
        plugin = catalog.register(PluginSpec(name="db", repo="https://example.org/db.git", ref="v1"))

        catalog.materialize(plugin)

        dest = str(tmp_path / "db")
        assert seen == [
            ["git", "clone", "https://example.org/db.git", dest],
            ["git", "-C", dest, "checkout", "v1"],
        ]

    def test_existing_checkout_is_left_alone(self, tmp_path, monkeypatch):
        seen = []
        monkeypatch.setattr(plugins_mod, "run_cmd", lambda argv, **kw: seen.append(argv))
        (tmp_path / "db").mkdir()
        catalog = PluginCatalog(dest=str(tmp_path))
        catalog.materialize(catalog.register(PluginSpec(name="db", repo="https://example.org/db.git")))
        assert seen == []

    def test_reclone_fetches_ref(self, tmp_path, monkeypatch):
        seen = []
        monkeypatch.setattr(plugins_mod, "run_cmd", lambda argv, **kw: seen.append(argv))
        (tmp_path / "db").mkdir()
        catalog = PluginCatalog(dest=str(tmp_path), reclone=True)
        catalog.materialize(catalog.register(PluginSpec(name="db", repo="https://example.org/db.git", ref="v2")))
        assert seen[-1] == ["git", "-C", str(tmp_path / "db"), "checkout", "FETCH_HEAD"]

    def test_clone_failure_is_fetch_error_with_status(self, tmp_path, monkeypatch):
        def fail(argv, **kw):
            raise CommandError(argv, 128)

        monkeypatch.setattr(plugins_mod, "run_cmd", fail)
        catalog = PluginCatalog(dest=str(tmp_path))
        plugin = catalog.register(PluginSpec(name="db", repo="https://example.org/db.git"))

        with pytest.raises(FetchError) as exc:
            catalog.materialize(plugin)
        assert exc.value.status == 128
        assert exc.value.plugin == "db"

    def test_offline_missing_checkout_fails(self, tmp_path):
        catalog = PluginCatalog(dest=str(tmp_path), offline=True)
        plugin = catalog.register(PluginSpec(name="db", repo="https://example.org/db.git"))
        with pytest.raises(FetchError):
            catalog.materialize(plugin)


class TestDiscover:
    def _write_plugin(self, root: Path, body: str) -> None:
        root.mkdir(parents=True, exist_ok=True)
        (root / "stackforge_plugin.py").write_text(textwrap.dedent(body), encoding="utf-8")

    def test_functions_named_after_phases(self, tmp_path):
        self._write_plugin(
            tmp_path / "db",
            """
            def pre_install(ctx):
                ctx["db"] = "pre"

            def install(ctx):
                return 0

            def helper(ctx):
                pass
            """,
        )
        catalog = PluginCatalog(dest=str(tmp_path))
        plugin = catalog.discover(catalog.register(PluginSpec(name="db", repo="https://example.org/db.git")))

        assert sorted(plugin.hooks) == ["install", "pre-install"]
        assert [p.name for p, _ in catalog.hooks_for("pre-install")] == ["db"]

    def test_explicit_hooks_table(self, tmp_path):
        self._write_plugin(
            tmp_path / "mq",
            """
            def _setup(ctx):
                pass

            HOOKS = {"post-config": _setup}
            """,
        )
        catalog = PluginCatalog(dest=str(tmp_path))
        plugin = catalog.discover(catalog.register(PluginSpec(name="mq", repo="https://example.org/mq.git")))
        assert list(plugin.hooks) == ["post-config"]

    def test_unknown_phase_in_table_is_fetch_error(self, tmp_path):
        self._write_plugin(tmp_path / "mq", "HOOKS = {'deploy': print}\n")
        catalog = PluginCatalog(dest=str(tmp_path))
        with pytest.raises(FetchError):
            catalog.discover(catalog.register(PluginSpec(name="mq", repo="https://example.org/mq.git")))

    def test_missing_module_is_fetch_error(self, tmp_path):
        (tmp_path / "db").mkdir()
        catalog = PluginCatalog(dest=str(tmp_path))
        with pytest.raises(FetchError):
            catalog.discover(catalog.register(PluginSpec(name="db", repo="https://example.org/db.git")))

    def test_prepare_skips_disabled(self, tmp_path, monkeypatch):
        seen = []
        monkeypatch.setattr(plugins_mod, "run_cmd", lambda argv, **kw: seen.append(argv))
        self._write_plugin(tmp_path / "db", "def install(ctx):\n    pass\n")
        catalog = PluginCatalog(dest=str(tmp_path))
        catalog.register(PluginSpec(name="db", repo="https://example.org/db.git"))
        catalog.register(PluginSpec(name="off", repo="https://example.org/off.git", enabled=False))

        catalog.prepare()

        assert seen == []
        assert [p.name for p, _ in catalog.hooks_for("install")] == ["db"]

    def test_materialize_all_clones_in_registration_order(self, tmp_path, monkeypatch):
        cloned = []
        monkeypatch.setattr(
            plugins_mod, "run_cmd", lambda argv, **kw: cloned.append(argv[-1]) if argv[1] == "clone" else None
        )
        catalog = PluginCatalog(dest=str(tmp_path))
        for name in ("zeta", "alpha", "mid"):
            catalog.register(PluginSpec(name=name, repo=f"https://example.org/{name}.git"))

        catalog.materialize_all()

        assert cloned == [str(tmp_path / n) for n in ("zeta", "alpha", "mid")]

"""CLI 测试 - 使用 CliRunner，远程数据库与网络均被替换"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from modpull import __version__
from modpull.cli import main
from modpull.core.dep.manifest import read_manifest
from modpull.core.dep.registry import RemotePackage, RemoteRegistry
from modpull.core.hashing import hash_bytes


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, make_mod, transport_factory):
    """远程有 App(依赖 Lib) 与 Lib，本地模组目录为空"""
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    archives = {
        "App": ("1.0.0", make_mod("App", "1.0.0", {"Lib": "1.0.0"}, {"Fancy": None})),
        "Lib": ("1.0.0", make_mod("Lib", "1.0.0")),
    }
    packages, routes = {}, {}
    for i, (name, (version, data)) in enumerate(archives.items()):
        url = f"https://gamebanana.com/mmdl/{70 + i}"
        packages[name] = RemotePackage(name, version, url, (hash_bytes(data),), mod_id=i + 1)
        routes[url] = data
    registry = RemoteRegistry(packages)
    transport = transport_factory(routes)

    monkeypatch.setattr(RemoteRegistry, "load", classmethod(lambda cls, url, timeout=30.0: registry))
    monkeypatch.setattr("modpull.core.downloader.open_url", transport)

    mods = tmp_path / "Mods"
    base_args = ["--config", str(tmp_path / "absent.yml"), "--mods-dir", str(mods), "-m", "gb"]
    return mods, base_args, transport


def _run(args: list[str]):
    return CliRunner().invoke(main, args, catch_exceptions=False)


class TestGlobalOptions:
    def test_version(self) -> None:
        result = _run(["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    @pytest.mark.parametrize("extra,code", [
        (["-j", "9"], "VALIDATION_ERROR"),
        (["-j", "0"], "VALIDATION_ERROR"),
        (["-m", "gb,moon"], "VALIDATION_ERROR"),
    ])
    def test_invalid_options_fail_before_network(self, env, extra, code) -> None:
        mods, base_args, transport = env
        result = _run(base_args + extra + ["install", "App"])
        assert result.exit_code != 0
        assert code in result.output
        assert transport.calls == []

    def test_bad_config_file(self, env, tmp_path: Path) -> None:
        bad = tmp_path / "bad.yml"
        bad.write_text("jobs: [\n", encoding="utf-8")
        result = _run(["--config", str(bad), "list"])
        assert result.exit_code != 0
        assert "CONFIG_ERROR" in result.output


class TestModCommands:
    def test_install(self, env) -> None:
        mods, base_args, _ = env
        result = _run(base_args + ["install", "App"])

        assert result.exit_code == 0, result.output
        assert "[install] Lib: 1.0.0" in result.output
        assert "[install] App: 1.0.0" in result.output
        assert "Fancy" in result.output
        assert (mods / "App.zip").exists() and (mods / "Lib.zip").exists()

    def test_install_by_mod_page_shows_resolution(self, env) -> None:
        mods, base_args, _ = env
        page = "https://gamebanana.com/mods/2"
        result = _run(base_args + ["install", page])

        assert result.exit_code == 0, result.output
        assert f"{page} -> Lib" in result.output
        assert (mods / "Lib.zip").exists()

    def test_install_unknown_package(self, env) -> None:
        _, base_args, _ = env
        result = _run(base_args + ["install", "Ghost"])
        assert result.exit_code != 0
        assert "DEPENDENCY_NOT_FOUND" in result.output

    def test_install_bad_reference(self, env) -> None:
        _, base_args, _ = env
        result = _run(base_args + ["install", "https://example.com/mods/1"])
        assert result.exit_code != 0
        assert "VALIDATION_ERROR" in result.output

    def test_list_and_update(self, env, make_mod) -> None:
        mods, base_args, transport = env
        mods.mkdir()
        (mods / "App.zip").write_bytes(make_mod("App", "0.9.0", {"Lib": "1.0.0"}))
        (mods / "Lib.zip").write_bytes(make_mod("Lib", "0.9.9"))

        listing = _run(base_args + ["list"])
        assert "App" in listing.output and "0.9.0" in listing.output

        dry = _run(base_args + ["update", "--dry-run"])
        assert dry.exit_code == 0, dry.output
        assert "[update ] App: 0.9.0 -> 1.0.0" in dry.output
        assert "共 2 个包待更新" in dry.output
        assert read_manifest(mods / "App.zip").version == "0.9.0"

        applied = _run(base_args + ["update"])
        assert applied.exit_code == 0, applied.output
        assert read_manifest(mods / "App.zip").version == "1.0.0"

    def test_list_empty(self, env) -> None:
        _, base_args, _ = env
        result = _run(base_args + ["list"])
        assert "没有已安装的包" in result.output

    def test_manifest(self, env, make_mod, tmp_path: Path) -> None:
        _, base_args, _ = env
        archive = tmp_path / "Some.zip"
        archive.write_bytes(make_mod("Some", "4.5.6", {"Lib": "1.0.0"}, {"Opt": None}))
        result = _run(base_args + ["manifest", str(archive)])
        assert result.exit_code == 0, result.output
        assert "名称: Some" in result.output
        assert "依赖: Lib 1.0.0" in result.output
        assert "可选: Opt" in result.output

    def test_manifest_missing(self, env, make_zip, tmp_path: Path) -> None:
        _, base_args, _ = env
        archive = tmp_path / "Bare.zip"
        archive.write_bytes(make_zip({"readme.txt": b"x"}))
        result = _run(base_args + ["manifest", str(archive)])
        assert result.exit_code != 0
        assert "ENTRY_NOT_FOUND" in result.output


class TestCacheCommands:
    def test_clear(self, env, tmp_path: Path) -> None:
        mods, base_args, _ = env
        assert _run(base_args + ["install", "App"]).exit_code == 0
        store = tmp_path / "state" / "modpull" / "checksum_cache.json"
        assert store.exists()

        result = _run(base_args + ["cache", "clear"])
        assert result.exit_code == 0
        assert not store.exists()

    def test_prune(self, env) -> None:
        _, base_args, _ = env
        result = _run(base_args + ["cache", "prune"])
        assert result.exit_code == 0
        assert "已清理 0 条记录" in result.output

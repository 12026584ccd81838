"""远程包数据库测试 - 加载、倒排索引与引用解析"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from modpull.core.dep.models import PackageReference
from modpull.core.dep.registry import RemoteRegistry
from modpull.core.exceptions import DependencyNotFound, DownloadError, ManifestError

DATABASE = b"""
SpeedrunTool:
  Version: 3.24.3
  URL: https://gamebanana.com/mmdl/1380853
  Size: 251301
  GameBananaId: 6597
  Checksums:
    - ABCDEF0123
CollabUtils2:
  Version: 1.9
  URL: https://gamebanana.com/mmdl/999
  GameBananaId: 7000
CollabLobbyUI:
  Version: 1.0.0
  URL: https://gamebanana.com/mmdl/998
  GameBananaId: 7000
Broken:
  Version: 1.0.0
"""


@pytest.fixture()
def registry() -> RemoteRegistry:
    return RemoteRegistry.from_yaml_bytes(DATABASE)


class TestLoad:
    def test_records(self, registry: RemoteRegistry) -> None:
        pkg = registry.get("SpeedrunTool")
        assert pkg is not None
        assert (pkg.version, pkg.size, pkg.mod_id, pkg.file_id) == ("3.24.3", 251301, 6597, 1380853)
        assert pkg.has_checksum("abcdef0123")

    def test_version_coerced_to_string(self, registry: RemoteRegistry) -> None:
        assert registry.get("CollabUtils2").version == "1.9"

    def test_record_without_url_skipped(self, registry: RemoteRegistry) -> None:
        assert "Broken" not in registry
        assert len(registry) == 3

    @pytest.mark.parametrize("field,value", [
        ("Size", '"n/a"'),
        ("GameBananaId", "[1, 2]"),
    ])
    def test_record_with_bad_number_skipped(self, field: str, value: str) -> None:
        data = DATABASE + f"Odd:\n  Version: 1.0.0\n  URL: https://gamebanana.com/mmdl/5\n  {field}: {value}\n".encode()
        registry = RemoteRegistry.from_yaml_bytes(data)
        assert "Odd" not in registry
        assert "SpeedrunTool" in registry

    def test_single_checksum_string(self) -> None:
        data = b"Solo:\n  Version: 1.0.0\n  URL: https://gamebanana.com/mmdl/5\n  Checksums: 0123abcd\n"
        assert RemoteRegistry.from_yaml_bytes(data).get("Solo").checksums == ("0123abcd",)

    @pytest.mark.parametrize("data", [b"- a\n- b\n", b"key: [unclosed\n"])
    def test_invalid_document(self, data: bytes) -> None:
        with pytest.raises(ManifestError):
            RemoteRegistry.from_yaml_bytes(data)

    def test_load_over_http(self) -> None:
        response = MagicMock()
        response.read.return_value = DATABASE
        response.__enter__.return_value = response
        with patch("modpull.core.dep.registry.open_url", return_value=response) as opener:
            registry = RemoteRegistry.load("https://example.com/db.yaml", timeout=5)
        opener.assert_called_once_with("https://example.com/db.yaml", 5)
        assert len(registry) == 3

    def test_load_network_error(self) -> None:
        with patch("modpull.core.dep.registry.open_url", side_effect=OSError("unreachable")):
            with pytest.raises(DownloadError, match="unreachable"):
                RemoteRegistry.load("https://example.com/db.yaml")


class TestResolveReference:
    def test_by_name(self, registry: RemoteRegistry) -> None:
        ref = PackageReference.parse("SpeedrunTool")
        assert registry.resolve_reference(ref).name == "SpeedrunTool"

    def test_by_mod_page(self, registry: RemoteRegistry) -> None:
        ref = PackageReference.parse("https://gamebanana.com/mods/6597")
        assert registry.resolve_reference(ref).name == "SpeedrunTool"

    def test_mod_page_with_several_packages_picks_first_sorted(self, registry: RemoteRegistry) -> None:
        assert registry.names_for_mod(7000) == ["CollabLobbyUI", "CollabUtils2"]
        ref = PackageReference.parse("https://gamebanana.com/mods/7000")
        assert registry.resolve_reference(ref).name == "CollabLobbyUI"

    def test_by_download_url(self, registry: RemoteRegistry) -> None:
        ref = PackageReference.parse("https://gamebanana.com/dl/999")
        assert registry.resolve_reference(ref).name == "CollabUtils2"

    @pytest.mark.parametrize("text", [
        "NoSuchMod",
        "https://gamebanana.com/mods/1",
        "https://gamebanana.com/mmdl/1",
    ])
    def test_not_found(self, registry: RemoteRegistry, text: str) -> None:
        with pytest.raises(DependencyNotFound):
            registry.resolve_reference(PackageReference.parse(text))

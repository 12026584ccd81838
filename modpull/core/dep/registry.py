"""远程包数据库

职责:
- 从 YAML 数据库（包名 -> 记录）加载远程包定义
- 建立 模组 ID -> 包名 的倒排索引
- 把用户引用解析为唯一的远程包

记录格式:
    SpeedrunTool:
      Version: 3.24.3
      URL: https://gamebanana.com/mmdl/1380853
      Size: 251301
      GameBananaId: 6597
      Checksums:
        - 9f86d081884c7d659a2feaa0c55ad015...
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

import yaml

from modpull.core.dep.models import PackageReference, ReferenceKind
from modpull.core.exceptions import DependencyNotFound, DownloadError, ManifestError
from modpull.core.mirrors import extract_file_id
from modpull.utils.net import open_url
from modpull.utils.yaml_io import parse_yaml_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemotePackage:
    name: str
    version: str
    download_url: str
    checksums: tuple[str, ...] = ()
    size: int = 0
    mod_id: int = 0

    @property
    def file_id(self) -> int | None:
        return extract_file_id(self.download_url)

    def has_checksum(self, digest: str) -> bool:
        return any(c.lower() == digest.lower() for c in self.checksums)


class RemoteRegistry:
    """远程包数据库的只读视图"""

    def __init__(self, packages: Mapping[str, RemotePackage]) -> None:
        self.packages = dict(packages)
        self._by_mod_id: dict[int, list[str]] = {}
        for name, pkg in self.packages.items():
            self._by_mod_id.setdefault(pkg.mod_id, []).append(name)

    @classmethod
    def from_yaml_bytes(cls, data: bytes, *, source: str = "<registry>") -> RemoteRegistry:
        try:
            document = parse_yaml_bytes(data, source=source)
        except yaml.YAMLError as e:
            raise ManifestError(f"远程数据库 YAML 无效 ({source}): {e}") from e
        if not isinstance(document, dict):
            raise ManifestError(f"远程数据库不是映射 ({source})")

        packages: dict[str, RemotePackage] = {}
        for name, info in document.items():
            if not isinstance(info, dict) or not info.get("URL"):
                logger.warning("跳过无下载地址的记录: %s", name)
                continue
            checksums = info.get("Checksums") or []
            if isinstance(checksums, str):
                checksums = [checksums]
            try:
                size = int(info.get("Size") or 0)
                mod_id = int(info.get("GameBananaId") or 0)
            except (TypeError, ValueError) as e:
                logger.warning("跳过字段无效的记录: %s (%s)", name, e)
                continue
            packages[str(name)] = RemotePackage(
                name=str(name),
                version=str(info.get("Version", "")),
                download_url=str(info["URL"]),
                checksums=tuple(str(c) for c in checksums),
                size=size,
                mod_id=mod_id,
            )

        logger.info("已加载 %d 个远程包", len(packages))
        return cls(packages)

    @classmethod
    def load(cls, url: str, timeout: float = 30.0) -> RemoteRegistry:
        """通过 HTTP 拉取远程数据库"""
        logger.info("拉取远程数据库: %s", url)
        try:
            with open_url(url, timeout) as response:
                data = response.read()
        except OSError as e:
            raise DownloadError(f"远程数据库拉取失败: {url} - {e}") from e
        return cls.from_yaml_bytes(data, source=url)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get(self, name: str) -> RemotePackage | None:
        return self.packages.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    def __len__(self) -> int:
        return len(self.packages)

    def names_for_mod(self, mod_id: int) -> list[str]:
        return sorted(self._by_mod_id.get(mod_id, []))

    def find_by_file_id(self, file_id: int) -> RemotePackage | None:
        for pkg in self.packages.values():
            if pkg.file_id == file_id:
                return pkg
        return None

    def resolve_reference(self, ref: PackageReference) -> RemotePackage:
        """把引用解析为唯一的远程包；同一模组下有多个包名时取排序后的第一个

        Raises:
            DependencyNotFound: 数据库中没有匹配项
        """
        pkg: RemotePackage | None
        if ref.kind is ReferenceKind.NAME:
            pkg = self.get(ref.source)
        elif ref.kind is ReferenceKind.MOD_PAGE:
            names = self.names_for_mod(ref.numeric_id or 0)
            if len(names) > 1:
                logger.info("模组 %s 对应多个包 %s，使用 %s", ref.numeric_id, names, names[0])
            pkg = self.get(names[0]) if names else None
        else:
            pkg = self.find_by_file_id(ref.numeric_id or 0)

        if pkg is None:
            raise DependencyNotFound(ref.source)
        return pkg

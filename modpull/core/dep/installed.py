"""本地已安装包索引

目录扫描属于外部协作方的职责，这里只提供最小实现:
- scan_archives: 列出模组目录下的 *.zip，排除更新黑名单中的文件
- InstalledIndex.from_archives: 经归档定位器读取每个归档的清单
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from modpull.core.dep.manifest import DEFAULT_MANIFEST_NAMES, read_manifest
from modpull.core.dep.versions import satisfies
from modpull.core.exceptions import ArchiveError, EntryNotFound, ManifestError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstalledPackage:
    name: str
    version: str
    archive_path: Path


class InstalledIndex:
    """包名 -> 已安装包"""

    def __init__(self, packages: Iterable[InstalledPackage] = ()) -> None:
        self._packages: dict[str, InstalledPackage] = {}
        for pkg in packages:
            if pkg.name in self._packages:
                logger.warning(
                    "重复安装的包 %s: 保留 %s，忽略 %s",
                    pkg.name, self._packages[pkg.name].archive_path.name, pkg.archive_path.name,
                )
                continue
            self._packages[pkg.name] = pkg

    @classmethod
    def from_archives(
        cls, paths: Iterable[Path], manifest_names: Sequence[str] = DEFAULT_MANIFEST_NAMES,
    ) -> InstalledIndex:
        """读取每个归档的清单；没有清单的归档记录警告后跳过"""
        packages: list[InstalledPackage] = []
        for path in paths:
            try:
                manifest = read_manifest(path, manifest_names)
            except EntryNotFound:
                logger.warning(
                    "%s 中没有清单文件 (%s)，该包将不参与更新",
                    path.name, " / ".join(manifest_names),
                )
                continue
            except (ArchiveError, ManifestError, OSError) as e:
                logger.warning("无法读取 %s 的清单: %s", path.name, e)
                continue
            packages.append(InstalledPackage(manifest.id, manifest.version, path))
        return cls(sorted(packages, key=lambda p: p.name))

    def get(self, name: str) -> InstalledPackage | None:
        return self._packages.get(name)

    def satisfying(self, name: str, constraint: str | None) -> InstalledPackage | None:
        """已安装且满足约束时返回该包"""
        pkg = self._packages.get(name)
        if pkg is not None and satisfies(pkg.version, constraint):
            return pkg
        return None

    @property
    def names(self) -> list[str]:
        return list(self._packages)

    def __contains__(self, name: object) -> bool:
        return name in self._packages

    def __iter__(self) -> Iterator[InstalledPackage]:
        return iter(self._packages.values())

    def __len__(self) -> int:
        return len(self._packages)


def read_blacklist(mods_dir: Path, filename: str = "updaterblacklist.txt") -> set[Path]:
    """读取更新黑名单，返回完整路径集合；文件不存在视为空"""
    path = mods_dir / filename
    if not path.exists():
        return set()
    entries: set[Path] = set()
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            entries.add(mods_dir / line)
    logger.debug("更新黑名单: %s", sorted(p.name for p in entries))
    return entries


def scan_archives(mods_dir: Path, blacklist_file: str | None = "updaterblacklist.txt") -> list[Path]:
    """列出模组目录下的 zip 归档（不区分大小写），按文件名排序"""
    if not mods_dir.is_dir():
        raise FileNotFoundError(f"模组目录不存在: {mods_dir}")
    blacklist = read_blacklist(mods_dir, blacklist_file) if blacklist_file else set()
    return sorted(
        p for p in mods_dir.iterdir()
        if p.is_file() and p.suffix.lower() == ".zip" and p not in blacklist
    )

"""模组包管理器

把远程数据库、多镜像下载器、校验和缓存与依赖解析器组装成面向 CLI 的入口。

核心逻辑:
  - plan_install() / plan_update() 只解析，返回不可变的安装计划
  - apply() 才写磁盘：新归档原子写入模组目录，更新时删除被替换的旧归档
  - 写入后直接把下载时得到的摘要记入校验和缓存，不再重新读文件

用法:
    from modpull.core.mod_manager import ModManager

    mm = ModManager()
    plan = mm.plan_install(["https://gamebanana.com/mods/53697"])
    mm.apply(plan)

    # 检查并应用已安装包的更新
    mm.apply(mm.plan_update())
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

from modpull.core.checksum_cache import ChecksumCache
from modpull.core.config import Config, get_config
from modpull.core.dep.installed import InstalledIndex, scan_archives
from modpull.core.dep.manifest import read_manifest
from modpull.core.dep.models import (
    InstallPlan,
    PackageManifest,
    PackageReference,
    PlanAction,
    PlanStep,
)
from modpull.core.dep.registry import RemoteRegistry
from modpull.core.dep.resolver import DependencyResolver
from modpull.core.downloader import FetchResult, MirrorDownloader, Transport
from modpull.core.mirrors import MirrorPriority
from modpull.utils.yaml_io import atomic_write_bytes

logger = logging.getLogger(__name__)

_BAD_FILENAME_CHARS = frozenset("/\\*?:;")
MAX_FILENAME_LENGTH = 255


def sanitize(name: str) -> str:
    """把包名转换为可用的文件名"""
    trimmed = name.strip()
    if trimmed.startswith("."):
        trimmed = trimmed[1:]
    collapsed = " ".join(trimmed.split())
    result = "".join(
        "_" if c in _BAD_FILENAME_CHARS else c
        for c in collapsed
        if c not in "\r\n\0"
    )
    result = result[:MAX_FILENAME_LENGTH]
    return result or "unnamed"


class ModManager:
    """模组包统一管理器"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        registry: RemoteRegistry | None = None,
        transport: Transport | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config or get_config()
        self.config.validate()
        self.mods_dir = Path(self.config.mods_dir)
        self.cache = ChecksumCache(self.config.cache_path, self.config.digest_algorithm)
        self.downloader = MirrorDownloader(
            MirrorPriority.parse(self.config.mirror_priority),
            self.config.jobs,
            timeout=self.config.timeout,
            digest_algorithm=self.config.digest_algorithm,
            transport=transport,
            cancel_event=cancel_event,
        )
        self._registry = registry

    @property
    def registry(self) -> RemoteRegistry:
        """首次访问时拉取远程数据库"""
        if self._registry is None:
            self._registry = RemoteRegistry.load(self.config.database_url, self.config.timeout)
        return self._registry

    # ------------------------------------------------------------------
    # 本地
    # ------------------------------------------------------------------

    def installed(self) -> InstalledIndex:
        if not self.mods_dir.is_dir():
            logger.warning("模组目录不存在: %s", self.mods_dir)
            return InstalledIndex()
        archives = scan_archives(self.mods_dir, self.config.blacklist_file)
        return InstalledIndex.from_archives(archives, self.config.manifest_names)

    def inspect_manifest(self, archive: str | Path) -> PackageManifest:
        return read_manifest(Path(archive), self.config.manifest_names)

    # ------------------------------------------------------------------
    # 解析
    # ------------------------------------------------------------------

    def resolver(self) -> DependencyResolver:
        return DependencyResolver(
            self.registry,
            self.downloader,
            self.cache,
            manifest_names=self.config.manifest_names,
            builtin_packages=self.config.builtin_packages,
        )

    def plan_install(self, references: Iterable[PackageReference | str]) -> InstallPlan:
        refs = [PackageReference.parse(r) if isinstance(r, str) else r for r in references]
        plan = self.resolver().resolve(refs, self.installed())
        self.cache.save()
        return plan

    def plan_update(self) -> InstallPlan:
        """以全部已安装且远程可查的包为根解析，未变化的包为 Skip"""
        installed = self.installed()
        builtins = set(self.config.builtin_packages)
        roots = []
        for pkg in installed:
            if pkg.name in builtins:
                continue
            if pkg.name not in self.registry:
                logger.debug("远程数据库中没有 %s，跳过更新检查", pkg.name)
                continue
            roots.append(PackageReference.from_name(pkg.name))
        if not roots:
            return InstallPlan()
        plan = self.resolver().resolve(roots, installed)
        self.cache.save()
        return plan

    # ------------------------------------------------------------------
    # 应用
    # ------------------------------------------------------------------

    def apply(self, plan: InstallPlan) -> list[Path]:
        """写入计划中新下载的归档，返回写入的路径"""
        written: list[Path] = []
        for step in plan:
            if step.action is PlanAction.SKIP or step.archive is None:
                continue
            written.append(self._write_step(step, step.archive))
        if written:
            self.cache.save()
        return written

    def _write_step(self, step: PlanStep, archive: FetchResult) -> Path:
        dest = self.mods_dir / f"{sanitize(step.package_id)}.zip"
        atomic_write_bytes(dest, archive.data)
        logger.info("已写入 %s -> %s", step.describe(), dest)

        old = step.archive_path
        if step.action is PlanAction.UPDATE and old is not None and old.resolve() != dest.resolve():
            old.unlink(missing_ok=True)
            self.cache.invalidate(old)
            logger.info("已删除旧归档: %s", old)

        digest = archive.digest
        self.cache.invalidate(dest)
        self.cache.get_or_compute(dest, lambda _path: digest)
        return dest

    # ------------------------------------------------------------------
    # 缓存
    # ------------------------------------------------------------------

    def prune_cache(self) -> int:
        """删除已不存在的归档对应的缓存记录"""
        existing = scan_archives(self.mods_dir, None) if self.mods_dir.is_dir() else []
        removed = self.cache.prune(existing)
        self.cache.save()
        return removed

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("校验和缓存已清空: %s", self.cache.store_path)

"""依赖解析器

职责:
- 以用户引用为根，逐层发现依赖并取得每个包的清单
- 已安装且满足约束的依赖不再展开；已安装的根包通过校验和缓存判断是否需要更新
- 同一层待下载的包交给下载器并发拉取，全部到齐后再展开下一层
- 检测版本冲突与循环依赖，输出依赖在前的确定性安装计划

失败策略:
- 单个包下载失败或清单不可读: 记入计划的 failures，不影响兄弟包
- 循环、冲突、找不到依赖: 整个解析失败，不产出部分计划
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from modpull.core.checksum_cache import ChecksumCache
from modpull.core.dep.installed import InstalledIndex
from modpull.core.dep.manifest import DEFAULT_MANIFEST_NAMES, read_manifest
from modpull.core.dep.models import (
    InstallPlan,
    OptionalDependency,
    PackageManifest,
    PackageReference,
    PlanAction,
    PlanStep,
)
from modpull.core.dep.registry import RemotePackage, RemoteRegistry
from modpull.core.dep.versions import compatible, satisfies, strongest
from modpull.core.downloader import FetchRequest, FetchResult, MirrorDownloader
from modpull.core.exceptions import (
    ArchiveError,
    ConflictingVersions,
    CycleDetected,
    DependencyNotFound,
    ManifestError,
)
from modpull.core.hashing import DigestFn, file_digest_fn

logger = logging.getLogger(__name__)

DEFAULT_BUILTIN_PACKAGES: tuple[str, ...] = ("Everest", "EverestCore", "Celeste")

ROOT = "<请求>"


@dataclass
class _Node:
    name: str
    action: PlanAction
    version: str
    installed_version: str | None = None
    digest: str | None = None
    archive: FetchResult | None = None
    archive_path: Path | None = None
    manifest: PackageManifest | None = None
    edges: list[str] = field(default_factory=list)
    failed: bool = False


class _Run:
    """单次解析的可变状态"""

    def __init__(self) -> None:
        self.nodes: dict[str, _Node] = {}
        self.order: list[str] = []
        self.roots: list[str] = []
        self.constraints: dict[str, list[tuple[str, str | None]]] = {}
        self.optional: list[OptionalDependency] = []
        self.failures: list[tuple[str, str]] = []

    def add(self, node: _Node) -> None:
        if node.name not in self.order:
            self.order.append(node.name)
        self.nodes[node.name] = node

    def require(self, name: str, who: str, constraint: str | None) -> None:
        self.constraints.setdefault(name, []).append((who, constraint))

    def requirers(self, name: str) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for who, _ in self.constraints.get(name, []):
            seen.setdefault(who, None)
        return tuple(seen)

    def effective_constraint(self, name: str) -> str | None:
        return strongest([c for _, c in self.constraints.get(name, [])])


class DependencyResolver:
    """把引用列表解析为有序安装计划"""

    def __init__(
        self,
        registry: RemoteRegistry,
        downloader: MirrorDownloader,
        cache: ChecksumCache,
        *,
        digest_fn: DigestFn | None = None,
        manifest_names: Sequence[str] = DEFAULT_MANIFEST_NAMES,
        builtin_packages: Iterable[str] = DEFAULT_BUILTIN_PACKAGES,
    ) -> None:
        self.registry = registry
        self.downloader = downloader
        self.cache = cache
        self.digest_fn = digest_fn or file_digest_fn(cache.algorithm)
        self.manifest_names = tuple(manifest_names)
        self.builtin_packages = frozenset(builtin_packages)

    def resolve(
        self,
        references: Iterable[PackageReference | str],
        installed_index: InstalledIndex | None = None,
    ) -> InstallPlan:
        """
        Raises:
            DependencyNotFound: 引用或必需依赖不在远程数据库中
            ConflictingVersions: 同一包存在不兼容的版本要求
            CycleDetected: 必需依赖构成环
        """
        installed = installed_index or InstalledIndex()
        run = _Run()

        frontier: list[str] = []
        resolved_refs: list[PackageReference] = []
        for ref in references:
            if isinstance(ref, str):
                ref = PackageReference.parse(ref)
            pkg = self.registry.resolve_reference(ref)
            resolved_refs.append(ref.resolved(pkg.name))
            if pkg.name in self.builtin_packages:
                logger.info("%s 由宿主程序提供，跳过", pkg.name)
                continue
            if pkg.name not in run.roots:
                run.roots.append(pkg.name)
                run.require(pkg.name, ROOT, None)
                frontier.append(pkg.name)

        while frontier:
            self._check_conflicts(run)
            self._materialize(run, frontier, installed)
            frontier = self._expand(run, frontier, installed)

        self._check_conflicts(run)
        self._check_chosen_versions(run)
        ordered = self._topological_order(run)

        steps = tuple(self._to_step(run, run.nodes[name]) for name in ordered)
        plan = InstallPlan(
            steps=steps, references=tuple(resolved_refs),
            optional=tuple(run.optional), failures=tuple(run.failures),
        )
        logger.info(
            "解析完成: %d 安装, %d 更新, %d 跳过, %d 失败",
            len(plan.by_action(PlanAction.INSTALL)),
            len(plan.by_action(PlanAction.UPDATE)),
            len(plan.by_action(PlanAction.SKIP)),
            len(plan.failures),
        )
        return plan

    # ------------------------------------------------------------------
    # 取得清单
    # ------------------------------------------------------------------

    def _materialize(self, run: _Run, frontier: list[str], installed: InstalledIndex) -> None:
        """为本层每个包确定动作并取得清单，需要下载的包一次性并发拉取"""
        requests: list[FetchRequest] = []
        for name in frontier:
            remote = self.registry.get(name)
            if remote is None:
                requirers = [w for w in run.requirers(name) if w != ROOT]
                raise DependencyNotFound(name, required_by=requirers[0] if requirers else "")

            local = installed.get(name)
            if local is not None:
                digest = self._local_digest(local.archive_path)
                if digest is not None and _unchanged(remote, digest, local.version):
                    node = _Node(
                        name, PlanAction.SKIP, local.version,
                        installed_version=local.version, digest=digest,
                        archive_path=local.archive_path,
                    )
                    run.add(node)
                    self._read_local_manifest(run, node, local.archive_path)
                    continue
                action = PlanAction.UPDATE
            else:
                action = PlanAction.INSTALL

            run.add(_Node(
                name, action, remote.version,
                installed_version=local.version if local else None,
                archive_path=local.archive_path if local else None,
            ))
            requests.append(FetchRequest(name, remote.download_url, remote.checksums))

        if not requests:
            return
        outcomes = self.downloader.fetch_many(requests)
        for name, outcome in outcomes.items():
            node = run.nodes[name]
            if outcome.result is None:
                node.failed = True
                run.failures.append((name, str(outcome.error)))
                continue
            node.archive = outcome.result
            node.digest = outcome.result.digest
            try:
                node.manifest = read_manifest(outcome.result.data, self.manifest_names)
            except (ArchiveError, ManifestError) as e:
                logger.warning("下载的归档不可用 %s: %s", name, e)
                node.failed = True
                node.archive = None
                run.failures.append((name, str(e)))
                continue
            node.version = node.manifest.version

    def _local_digest(self, path: Path) -> str | None:
        try:
            return self.cache.get_or_compute(path, self.digest_fn)
        except OSError as e:
            logger.warning("无法计算本地归档摘要 %s: %s", path, e)
            return None

    def _read_local_manifest(self, run: _Run, node: _Node, path: Path) -> None:
        try:
            node.manifest = read_manifest(path, self.manifest_names)
        except (ArchiveError, ManifestError, OSError) as e:
            logger.warning("本地归档清单不可读 %s: %s", path, e)
            node.failed = True
            run.failures.append((node.name, str(e)))

    # ------------------------------------------------------------------
    # 展开依赖
    # ------------------------------------------------------------------

    def _expand(self, run: _Run, frontier: list[str], installed: InstalledIndex) -> list[str]:
        """按声明顺序记录本层清单中的依赖，返回下一层待取得的包"""
        next_frontier: list[str] = []
        for name in frontier:
            node = run.nodes[name]
            if node.manifest is None:
                continue
            for dep in node.manifest.dependencies:
                if dep.id in self.builtin_packages:
                    continue
                if dep.optional:
                    run.optional.append(OptionalDependency(
                        package_id=dep.id,
                        required_by=name,
                        version_constraint=dep.version_constraint,
                        installed=dep.id in installed,
                    ))
                    continue

                run.require(dep.id, name, dep.version_constraint)
                if dep.id not in node.edges:
                    node.edges.append(dep.id)
                if dep.id in next_frontier:
                    continue

                existing = run.nodes.get(dep.id)
                if existing is not None:
                    if not self._reopen(run, existing, installed):
                        continue
                else:
                    local = installed.satisfying(dep.id, run.effective_constraint(dep.id))
                    if local is not None:
                        logger.debug("%s 已安装 %s，满足 %s 的要求", dep.id, local.version, name)
                        run.add(_Node(
                            dep.id, PlanAction.SKIP, local.version,
                            installed_version=local.version, archive_path=local.archive_path,
                        ))
                        continue
                next_frontier.append(dep.id)
        return next_frontier

    @staticmethod
    def _reopen(run: _Run, node: _Node, installed: InstalledIndex) -> bool:
        """未展开的已安装依赖不再满足收紧后的约束时，需要重新取得"""
        if node.manifest is not None or node.failed or node.action is not PlanAction.SKIP:
            return False
        if installed.satisfying(node.name, run.effective_constraint(node.name)) is not None:
            return False
        logger.debug("%s 已安装版本不满足新约束，改为重新取得", node.name)
        del run.nodes[node.name]
        return True

    # ------------------------------------------------------------------
    # 校验
    # ------------------------------------------------------------------

    @staticmethod
    def _check_conflicts(run: _Run) -> None:
        for name, reqs in run.constraints.items():
            present = [(who, c) for who, c in reqs if c]
            if present and not all(compatible(present[0][1], c) for _, c in present[1:]):
                raise ConflictingVersions(name, [(who, str(c)) for who, c in present])

    @staticmethod
    def _check_chosen_versions(run: _Run) -> None:
        """最终选定的版本必须满足生效约束"""
        for name in run.order:
            node = run.nodes[name]
            if node.failed:
                continue
            effective = run.effective_constraint(name)
            if not satisfies(node.version, effective):
                reqs = [(who, str(c)) for who, c in run.constraints[name] if c]
                reqs.append(("可用版本", node.version))
                raise ConflictingVersions(name, reqs)

    @staticmethod
    def _topological_order(run: _Run) -> list[str]:
        """依赖在前；互不相关的子图按首次发现顺序排列"""
        done: set[str] = set()
        path: list[str] = []
        ordered: list[str] = []

        def visit(name: str) -> None:
            if name in done:
                return
            if name in path:
                raise CycleDetected(path[path.index(name):] + [name])
            path.append(name)
            for dep in run.nodes[name].edges:
                if dep in run.nodes:
                    visit(dep)
            path.pop()
            done.add(name)
            ordered.append(name)

        for name in run.order:
            visit(name)
        return [n for n in ordered if not run.nodes[n].failed]

    @staticmethod
    def _to_step(run: _Run, node: _Node) -> PlanStep:
        return PlanStep(
            package_id=node.name,
            action=node.action,
            version=node.version,
            installed_version=node.installed_version,
            digest=node.digest,
            archive=node.archive,
            archive_path=node.archive_path,
            required_by=tuple(w for w in run.requirers(node.name) if w != ROOT),
        )


def _unchanged(remote: RemotePackage, digest: str, installed_version: str) -> bool:
    """本地归档与远程当前版本一致；远程未提供摘要时退回比较版本号"""
    if remote.checksums:
        return remote.has_checksum(digest)
    return installed_version == remote.version

"""统一异常体系

所有业务异常继承 ModPullError，替代散落的 ValueError / RuntimeError。
CLI 层可据此输出带错误码的友好提示。

恢复粒度:
  - 归档级（ArchiveError 及子类）: 只影响该归档，不影响整批
  - 网络级（DownloadError 及子类）: 单个包失败，兄弟下载继续
  - 解析级（ResolutionError 及子类）: 整个计划作废，部分计划不安全
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modpull.core.downloader import MirrorFailure


class ModPullError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ModPullError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(ModPullError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


# ---- 归档 ----


class ArchiveError(ModPullError):
    """ZIP 归档读取失败"""

    code = "ARCHIVE_ERROR"


class ArchiveMalformed(ArchiveError):
    """归档结构违反 ZIP 容器格式"""

    code = "ARCHIVE_MALFORMED"


class EntryNotFound(ArchiveError):
    """归档中不存在指定条目"""

    code = "ENTRY_NOT_FOUND"

    def __init__(self, name: str, message: str = "") -> None:
        super().__init__(message or f"归档中不存在条目: {name}")
        self.name = name


class UnsupportedCompression(ArchiveError):
    code = "UNSUPPORTED_COMPRESSION"

    def __init__(self, method: int, name: str = "") -> None:
        label = f" ({name})" if name else ""
        super().__init__(f"不支持的压缩方法: {method}{label}")
        self.method = method


class ChecksumMismatch(ArchiveError):
    """解压后数据的 CRC-32 与中央目录记录不一致"""

    code = "CHECKSUM_MISMATCH"

    def __init__(self, name: str, expected: int, actual: int | None, reason: str = "") -> None:
        detail = reason or f"期望 {expected:08x}, 实际 {actual:08x}"
        super().__init__(f"条目数据损坏 {name}: {detail}")
        self.name = name
        self.expected = expected
        self.actual = actual


class ManifestError(ModPullError):
    """清单存在但无法解析"""

    code = "MANIFEST_ERROR"


# ---- 网络 ----


class DownloadError(ModPullError):
    code = "DOWNLOAD_ERROR"


class AllMirrorsExhausted(DownloadError):
    """所有候选镜像均失败，按优先级顺序携带每个镜像的失败原因"""

    code = "ALL_MIRRORS_EXHAUSTED"

    def __init__(self, package_id: str, failures: Sequence[MirrorFailure]) -> None:
        reasons = "; ".join(f"{f.mirror_id}: {f.reason}" for f in failures)
        super().__init__(f"{package_id} 所有镜像均下载失败 ({reasons})")
        self.package_id = package_id
        self.failures = tuple(failures)


class FetchCancelled(DownloadError):
    """下载被协作式取消，已丢弃部分缓冲"""

    code = "FETCH_CANCELLED"

    def __init__(self, package_id: str) -> None:
        super().__init__(f"下载已取消: {package_id}")
        self.package_id = package_id


# ---- 依赖解析 ----


class ResolutionError(ModPullError):
    code = "RESOLUTION_ERROR"


class CycleDetected(ResolutionError):
    code = "CYCLE_DETECTED"

    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__(f"检测到循环依赖: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class ConflictingVersions(ResolutionError):
    """同一包存在互不兼容的版本要求

    requirements: [(要求方, 版本约束), ...]
    """

    code = "CONFLICTING_VERSIONS"

    def __init__(self, package_id: str, requirements: Sequence[tuple[str, str]]) -> None:
        listed = ", ".join(f"{who} 要求 {ver}" for who, ver in requirements)
        super().__init__(f"{package_id} 版本冲突: {listed}")
        self.package_id = package_id
        self.requirements = list(requirements)


class DependencyNotFound(ResolutionError):
    code = "DEPENDENCY_NOT_FOUND"

    def __init__(self, package_id: str, required_by: str = "") -> None:
        label = f" (被 {required_by} 依赖)" if required_by else ""
        super().__init__(f"远程数据库中找不到包: {package_id}{label}")
        self.package_id = package_id
        self.required_by = required_by

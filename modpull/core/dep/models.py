"""依赖解析数据模型

数据类:
- PackageReference: 用户输入的包引用（页面 URL、下载链接或包名）
- DependencySpec / PackageManifest: 归档内清单描述的包及其依赖
- PlanStep / InstallPlan: 解析结果，发出后不可变
"""

from __future__ import annotations

import enum
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from modpull.core.exceptions import ValidationError
from modpull.core.mirrors import extract_file_id

if TYPE_CHECKING:
    from modpull.core.downloader import FetchResult

GAMEBANANA_HOST = "gamebanana.com"


class ReferenceKind(str, enum.Enum):
    NAME = "name"
    MOD_PAGE = "mod_page"          # https://gamebanana.com/mods/<mod id>
    DOWNLOAD_URL = "download_url"  # https://gamebanana.com/mmdl/<file id>


@dataclass(frozen=True)
class PackageReference:
    """尚未对照远程数据库解析的引用"""

    source: str
    kind: ReferenceKind = ReferenceKind.NAME
    numeric_id: int | None = None
    resolved_id: str | None = None

    @classmethod
    def parse(cls, text: str) -> PackageReference:
        """解析命令行上的引用文本

        Raises:
            ValidationError: URL 协议、主机或路径不合法，或 ID 不是 32 位无符号整数
        """
        text = text.strip()
        if not text:
            raise ValidationError("包引用不能为空")
        if "://" not in text:
            return cls(source=text)

        parsed = urlparse(text)
        if parsed.scheme not in ("http", "https"):
            raise ValidationError(f"不支持的 URL 协议: {text}（仅支持 http/https）")
        if parsed.hostname != GAMEBANANA_HOST:
            raise ValidationError(f"不是 GameBanana 链接: {text}")

        file_id = extract_file_id(text)
        if file_id is not None:
            return cls(source=text, kind=ReferenceKind.DOWNLOAD_URL, numeric_id=file_id)

        segments = [s for s in parsed.path.split("/") if s]
        if len(segments) != 2 or segments[0] != "mods":
            raise ValidationError(f"无法识别的 GameBanana 链接: {text}（期望 /mods/<ID>）")
        mod_id = segments[1]
        if not mod_id.isdigit() or int(mod_id) > 0xFFFFFFFF:
            raise ValidationError(f"无效的模组 ID: {mod_id}（期望 32 位无符号整数）")
        return cls(source=text, kind=ReferenceKind.MOD_PAGE, numeric_id=int(mod_id))

    @classmethod
    def from_name(cls, name: str) -> PackageReference:
        return cls(source=name)

    def resolved(self, package_id: str) -> PackageReference:
        return replace(self, resolved_id=package_id)


@dataclass(frozen=True)
class DependencySpec:
    id: str
    version_constraint: str | None = None
    optional: bool = False


@dataclass(frozen=True)
class PackageManifest:
    """归档内清单的首个条目（主包）"""

    id: str
    display_name: str
    version: str
    dependencies: tuple[DependencySpec, ...] = ()
    dll: str | None = None

    @property
    def required(self) -> list[DependencySpec]:
        return [d for d in self.dependencies if not d.optional]

    @property
    def optional(self) -> list[DependencySpec]:
        return [d for d in self.dependencies if d.optional]


class PlanAction(str, enum.Enum):
    INSTALL = "install"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class PlanStep:
    package_id: str
    action: PlanAction
    version: str
    installed_version: str | None = None
    digest: str | None = None
    archive: FetchResult | None = field(default=None, repr=False)   # 新下载的归档
    archive_path: Path | None = None                                # 已安装的本地归档
    required_by: tuple[str, ...] = ()

    @property
    def source_archive(self) -> bytes | Path | None:
        if self.archive is not None:
            return self.archive.data
        return self.archive_path

    def describe(self) -> str:
        if self.action is PlanAction.UPDATE:
            return f"{self.package_id}: {self.installed_version} -> {self.version}"
        return f"{self.package_id}: {self.version}"


@dataclass(frozen=True)
class OptionalDependency:
    """可选依赖只做记录，不触发下载"""

    package_id: str
    required_by: str
    version_constraint: str | None = None
    installed: bool = False


@dataclass(frozen=True)
class InstallPlan:
    """依赖在前、依赖方在后的有序计划

    failures 记录网络或归档层面失败的包 (包名, 原因)，这些包不在 steps 中。
    references 为已填入 resolved_id 的用户引用，按输入顺序。
    """

    steps: tuple[PlanStep, ...] = ()
    references: tuple[PackageReference, ...] = ()
    optional: tuple[OptionalDependency, ...] = ()
    failures: tuple[tuple[str, str], ...] = ()

    @property
    def complete(self) -> bool:
        return not self.failures

    def step(self, package_id: str) -> PlanStep | None:
        for s in self.steps:
            if s.package_id == package_id:
                return s
        return None

    def by_action(self, action: PlanAction) -> list[PlanStep]:
        return [s for s in self.steps if s.action is action]

    @property
    def package_ids(self) -> list[str]:
        return [s.package_id for s in self.steps]

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

"""依赖解析模块

- models.py: 引用、清单与安装计划数据模型
- versions.py: 版本比较与约束
- manifest.py: 归档内清单读取
- registry.py: 远程包数据库
- installed.py: 本地已安装包索引
- resolver.py: 依赖图构建与拓扑排序
"""

from modpull.core.dep.installed import InstalledIndex, InstalledPackage, scan_archives
from modpull.core.dep.manifest import read_manifest
from modpull.core.dep.models import (
    DependencySpec,
    InstallPlan,
    OptionalDependency,
    PackageManifest,
    PackageReference,
    PlanAction,
    PlanStep,
)
from modpull.core.dep.registry import RemotePackage, RemoteRegistry
from modpull.core.dep.resolver import DependencyResolver

__all__ = [
    "DependencyResolver",
    "DependencySpec",
    "InstallPlan",
    "InstalledIndex",
    "InstalledPackage",
    "OptionalDependency",
    "PackageManifest",
    "PackageReference",
    "PlanAction",
    "PlanStep",
    "RemotePackage",
    "RemoteRegistry",
    "read_manifest",
    "scan_archives",
]

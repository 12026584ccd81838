"""包清单读取

清单是归档根目录下的 YAML 序列，第一个条目是主包:

    - Name: SpeedrunTool
      Version: 3.24.3
      DLL: SpeedrunTool.dll
      Dependencies:
        - Name: EverestCore
          Version: 1.4465.0
      OptionalDependencies:
        - Name: TASRecorder
          Version: 1.0.0

两种文件名拼写（everest.yaml / everest.yml）视为同一个逻辑条目，按顺序取第一个存在的。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import yaml

from modpull.core.archive import SourceLike, open_archive
from modpull.core.dep.models import DependencySpec, PackageManifest
from modpull.core.exceptions import ManifestError
from modpull.utils.yaml_io import parse_yaml_bytes

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_NAMES: tuple[str, ...] = ("everest.yaml", "everest.yml")


def parse_manifest(data: bytes, *, source: str = "<manifest>") -> PackageManifest:
    """解析清单字节，返回主包清单

    Raises:
        ManifestError: YAML 无效、序列为空或缺少必填字段
    """
    try:
        document = parse_yaml_bytes(data, source=source)
    except yaml.YAMLError as e:
        raise ManifestError(f"清单 YAML 无效 ({source}): {e}") from e

    if isinstance(document, dict):
        document = [document]
    if not isinstance(document, list) or not document:
        raise ManifestError(f"清单中没有任何条目 ({source})")

    entry = document[0]
    if not isinstance(entry, dict):
        raise ManifestError(f"清单首个条目不是映射 ({source})")

    name = _required_str(entry, "Name", source)
    version = _required_str(entry, "Version", source)

    deps = _dependency_list(entry.get("Dependencies"), optional=False, source=source)
    deps += _dependency_list(entry.get("OptionalDependencies"), optional=True, source=source)

    dll = entry.get("DLL")
    return PackageManifest(
        id=name,
        display_name=name,
        version=version,
        dependencies=tuple(deps),
        dll=str(dll) if dll else None,
    )


def _required_str(entry: dict[str, Any], key: str, source: str) -> str:
    value = entry.get(key)
    if value is None or str(value).strip() == "":
        raise ManifestError(f"清单缺少字段 {key} ({source})")
    # YAML 会把 1.0 解析为浮点数，这里统一还原为字符串
    return str(value).strip()


def _dependency_list(raw: Any, *, optional: bool, source: str) -> list[DependencySpec]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ManifestError(f"依赖列表格式无效 ({source})")
    result: list[DependencySpec] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ManifestError(f"依赖条目不是映射: {item!r} ({source})")
        name = _required_str(item, "Name", source)
        version = item.get("Version")
        result.append(DependencySpec(
            id=name,
            version_constraint=str(version).strip() if version is not None else None,
            optional=optional,
        ))
    return result


def read_manifest(
    source: SourceLike, names: Sequence[str] = DEFAULT_MANIFEST_NAMES,
) -> PackageManifest:
    """通过归档定位器直接读取清单，不解压其他条目

    Raises:
        EntryNotFound: 所有候选文件名都不存在
        ArchiveError: 归档损坏
        ManifestError: 清单无法解析
    """
    with open_archive(source) as archive:
        entry_name, data = archive.read_first(names)
        label = f"{archive.source.name}:{entry_name}"
    logger.debug("读取清单: %s", label)
    return parse_manifest(data, source=label)


def has_manifest(source: SourceLike, names: Sequence[str] = DEFAULT_MANIFEST_NAMES) -> bool:
    """仅扫描中央目录判断清单是否存在"""
    with open_archive(source) as archive:
        return archive.find_first(names) is not None

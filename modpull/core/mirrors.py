"""镜像列表与候选 URL 生成

GameBanana 下载链接（/dl/<id> 或 /mmdl/<id>）中的文件 ID 可以映射到多个镜像。
镜像优先级是一次调用内确定的显式配置值，注入下载器而不是全局读取。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from modpull.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_DOWNLOAD_PREFIXES = (
    "http://gamebanana.com/dl/",
    "https://gamebanana.com/dl/",      # 页面上的手动下载链接
    "http://gamebanana.com/mmdl/",
    "https://gamebanana.com/mmdl/",    # 远程数据库中实际使用的前缀
)

_MAX_FILE_ID = 0xFFFFFFFF

DIRECT_MIRROR_ID = "direct"


@dataclass(frozen=True)
class Mirror:
    """一个镜像站点；template 中的 {id} 会被替换为文件 ID"""

    identifier: str
    template: str
    priority_rank: int

    def url_for(self, file_id: int) -> str:
        return self.template.format(id=file_id)


DEFAULT_MIRRORS: tuple[Mirror, ...] = (
    Mirror("gb", "https://gamebanana.com/mmdl/{id}", 0),                               # 美国
    Mirror("jade", "https://celestemodupdater.0x0a.de/banana-mirror/{id}.zip", 1),     # 德国
    Mirror("wegfan", "https://celeste.weg.fan/api/v2/download/gamebanana-files/{id}", 2),  # 中国
    Mirror("otobot", "https://banana-mirror-mods.celestemods.com/{id}.zip", 3),        # 北美
)


def extract_file_id(url: str) -> int | None:
    """从 GameBanana 下载链接中提取文件 ID，无法识别时返回 None"""
    for prefix in _DOWNLOAD_PREFIXES:
        if url.startswith(prefix):
            tail = url[len(prefix):]
            if tail.isdigit() and int(tail) <= _MAX_FILE_ID:
                return int(tail)
    return None


@dataclass(frozen=True)
class MirrorPriority:
    """生效的镜像子集及其顺序"""

    mirrors: tuple[Mirror, ...] = DEFAULT_MIRRORS

    @classmethod
    def parse(
        cls,
        value: str | Sequence[str] | None = None,
        available: Sequence[Mirror] = DEFAULT_MIRRORS,
    ) -> MirrorPriority:
        """解析逗号分隔的镜像 ID 列表

        显式列表既重排也限定候选集合；None 表示使用默认排序。
        重复项保留首次出现，未知 ID 或空列表视为校验失败。
        """
        if value is None:
            return cls(tuple(available))

        ids = value.split(",") if isinstance(value, str) else list(value)
        by_id = {m.identifier: m for m in available}

        selected: list[Mirror] = []
        unknown: list[str] = []
        for raw in ids:
            mirror_id = raw.strip().lower()
            if not mirror_id:
                continue
            mirror = by_id.get(mirror_id)
            if mirror is None:
                unknown.append(mirror_id)
            elif all(m.identifier != mirror_id for m in selected):
                selected.append(mirror)

        if unknown:
            raise ValidationError(
                f"未知的镜像: {', '.join(unknown)}，可用: {', '.join(by_id)}",
                details=unknown,
            )
        if not selected:
            raise ValidationError("镜像优先级列表为空")

        return cls(tuple(
            Mirror(m.identifier, m.template, rank) for rank, m in enumerate(selected)
        ))

    @property
    def identifiers(self) -> list[str]:
        return [m.identifier for m in self.mirrors]

    def candidate_urls(self, download_url: str) -> list[tuple[str, str]]:
        """按优先级生成 (镜像 ID, URL) 候选列表

        无法提取文件 ID 的链接只有一个直连候选。
        """
        file_id = extract_file_id(download_url)
        if file_id is None:
            return [(DIRECT_MIRROR_ID, download_url)]
        return [(m.identifier, m.url_for(file_id)) for m in self.mirrors]

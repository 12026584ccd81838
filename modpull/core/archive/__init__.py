"""ZIP 归档随机读取

- source.py: 显式偏移的字节源
- records.py: EOCD / CDFH / LFH 记录解析
- locator.py: 按名称定位并解码单个条目
"""

from modpull.core.archive.locator import (
    ArchiveHandle,
    contains_entry,
    locate_and_decode,
    open_archive,
)
from modpull.core.archive.records import (
    CentralDirectoryEntry,
    CompressionMethod,
    EndOfCentralDirectory,
)
from modpull.core.archive.source import ByteSource, SourceLike

__all__ = [
    "ArchiveHandle",
    "ByteSource",
    "CentralDirectoryEntry",
    "CompressionMethod",
    "EndOfCentralDirectory",
    "SourceLike",
    "contains_entry",
    "locate_and_decode",
    "open_archive",
]

"""归档定位/解码器 - 从 ZIP 中随机读取单个命名条目

只解析必要的区域，不把整个归档读入内存:
  1. 从尾部反向定位 EOCD
  2. 读取中央目录区域，建立 条目名 -> CentralDirectoryEntry 索引（惰性、仅一次）
  3. 按名称查找，回到 LFH 确定数据起点，只读取该条目的压缩数据
  4. 按压缩方法解压并校验 CRC-32

ArchiveHandle 的 seek 是有状态的，一个句柄只供一个逻辑操作使用；
需要并发读取同一归档时，各自打开自己的句柄。

用法:
    from modpull.core.archive import locate_and_decode, contains_entry

    data = locate_and_decode("SpeedrunTool.zip", "everest.yaml")

    with open_archive(buffer) as archive:
        name = archive.find_first(["everest.yaml", "everest.yml"])
"""

from __future__ import annotations

import logging
import zlib
from collections.abc import Iterable, Sequence

from modpull.core.archive.records import (
    CentralDirectoryEntry,
    CompressionMethod,
    EndOfCentralDirectory,
    find_eocd,
    iter_central_directory,
    read_local_header,
)
from modpull.core.archive.source import ByteSource, SourceLike
from modpull.core.exceptions import (
    ArchiveMalformed,
    ChecksumMismatch,
    EntryNotFound,
)

logger = logging.getLogger(__name__)


class ArchiveHandle:
    """已打开的归档 + 惰性构建的中央目录索引"""

    def __init__(self, source: SourceLike) -> None:
        self.source = ByteSource.open(source)
        self._eocd: EndOfCentralDirectory | None = None
        self._index: dict[str, CentralDirectoryEntry] | None = None

    # ------------------------------------------------------------------
    # 中央目录
    # ------------------------------------------------------------------

    @property
    def eocd(self) -> EndOfCentralDirectory:
        if self._eocd is None:
            self._eocd = find_eocd(self.source)
        return self._eocd

    def _load_index(self) -> dict[str, CentralDirectoryEntry]:
        if self._index is not None:
            return self._index

        eocd = self.eocd
        buffer = b""
        if eocd.central_directory_size:
            buffer = self.source.read_at(
                eocd.central_directory_offset, eocd.central_directory_size,
            )

        index: dict[str, CentralDirectoryEntry] = {}
        for entry in iter_central_directory(
            buffer, eocd.entry_count, source_name=self.source.name,
        ):
            # 重名条目保留第一条
            index.setdefault(entry.name, entry)

        logger.debug("中央目录已索引: %s (%d 个条目)", self.source.name, len(index))
        self._index = index
        return index

    def names(self) -> list[str]:
        return list(self._load_index())

    def get_entry(self, name: str) -> CentralDirectoryEntry:
        entry = self._load_index().get(name)
        if entry is None:
            raise EntryNotFound(name, f"归档中不存在条目: {name} ({self.source.name})")
        return entry

    def contains_entry(self, name: str) -> bool:
        """只做中央目录扫描和名称查找，不读取任何条目数据"""
        return name in self._load_index()

    def find_first(self, names: Iterable[str]) -> str | None:
        """按给定顺序返回第一个存在的条目名"""
        index = self._load_index()
        for name in names:
            if name in index:
                return name
        return None

    # ------------------------------------------------------------------
    # 数据读取
    # ------------------------------------------------------------------

    def read_entry(self, name: str) -> bytes:
        """读取并解码单个条目，只返回解压后的字节"""
        entry = self.get_entry(name)
        if entry.encrypted:
            raise ArchiveMalformed(f"不支持加密条目: {name} ({self.source.name})")

        # 解析压缩方法放在读取数据之前，未知方法不必读取数据
        method = CompressionMethod.from_raw(entry.compression_method, name)
        header = read_local_header(self.source, entry)
        raw = self.source.read_at(header.data_offset, entry.compressed_size)

        data = _decompress(entry, method, raw)
        actual = zlib.crc32(data) & 0xFFFFFFFF
        if actual != entry.crc32:
            raise ChecksumMismatch(name, entry.crc32, actual)
        return data

    def read_first(self, names: Sequence[str]) -> tuple[str, bytes]:
        """读取 names 中第一个存在的条目，全部缺失时以首选名报 EntryNotFound"""
        found = self.find_first(names)
        if found is None:
            wanted = " / ".join(names)
            raise EntryNotFound(names[0], f"归档中不存在条目: {wanted} ({self.source.name})")
        return found, self.read_entry(found)

    def close(self) -> None:
        self.source.close()

    def __enter__(self) -> ArchiveHandle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _decompress(entry: CentralDirectoryEntry, method: CompressionMethod, raw: bytes) -> bytes:
    """按压缩方法解码

    数据层面的任何损坏（inflate 失败、流不完整、长度不符）都归为 ChecksumMismatch，
    损坏的数据绝不会被静默接受。
    """
    if method is CompressionMethod.STORED:
        data = raw
    elif method is CompressionMethod.DEFLATE:
        inflater = zlib.decompressobj(-zlib.MAX_WBITS)
        try:
            # 多取 1 字节用于发现超长输出，避免解压炸弹
            data = inflater.decompress(raw, entry.uncompressed_size + 1)
        except zlib.error as e:
            raise ChecksumMismatch(entry.name, entry.crc32, None, f"inflate 失败: {e}") from e
        if not inflater.eof:
            raise ChecksumMismatch(entry.name, entry.crc32, None, "deflate 数据流不完整")
    else:  # pragma: no cover - CompressionMethod 只有两个成员
        raise AssertionError(method)

    if len(data) != entry.uncompressed_size:
        raise ChecksumMismatch(
            entry.name, entry.crc32, None,
            f"解压长度 {len(data)} 与记录的 {entry.uncompressed_size} 不一致",
        )
    return data


def open_archive(source: SourceLike) -> ArchiveHandle:
    return ArchiveHandle(source)


def locate_and_decode(source: SourceLike, entry_name: str) -> bytes:
    """从归档中提取单个条目的解压内容"""
    with ArchiveHandle(source) as archive:
        return archive.read_entry(entry_name)


def contains_entry(source: SourceLike, entry_name: str) -> bool:
    """廉价的存在性检查，仅扫描中央目录"""
    with ArchiveHandle(source) as archive:
        return archive.contains_entry(entry_name)

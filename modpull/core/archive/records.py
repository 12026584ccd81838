"""ZIP 容器记录结构

  - EOCD (End Of Central Directory): 位于文件尾部，指向中央目录
  - CDFH (Central Directory File Header): 中央目录中每个条目的元信息
  - LFH (Local File Header): 紧邻条目压缩数据之前的头部

所有多字节字段均为小端序。不支持 ZIP64 与分卷归档。
"""

from __future__ import annotations

import enum
import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass

from modpull.core.archive.source import ByteSource
from modpull.core.exceptions import ArchiveMalformed, UnsupportedCompression

logger = logging.getLogger(__name__)

EOCD_SIGNATURE = b"PK\x05\x06"
CDFH_SIGNATURE = b"PK\x01\x02"
LFH_SIGNATURE = b"PK\x03\x04"

_EOCD = struct.Struct("<4sHHHHIIH")
_CDFH = struct.Struct("<4sHHHHHHIIIHHHHHII")
_LFH = struct.Struct("<4sHHHHHIIIHH")

EOCD_SIZE = _EOCD.size    # 22
CDFH_SIZE = _CDFH.size    # 46
LFH_SIZE = _LFH.size      # 30

MAX_COMMENT_SIZE = 0xFFFF
# 反向搜索 EOCD 的窗口上限，不会触及窗口之外的字节
MAX_EOCD_SEARCH = EOCD_SIZE + MAX_COMMENT_SIZE

FLAG_ENCRYPTED = 0x0001
FLAG_UTF8 = 0x0800


class CompressionMethod(enum.IntEnum):
    STORED = 0
    DEFLATE = 8

    @classmethod
    def from_raw(cls, value: int, name: str = "") -> CompressionMethod:
        """未知取值是类型化错误，不回退到任何默认方法"""
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedCompression(value, name) from None


@dataclass(frozen=True)
class EndOfCentralDirectory:
    entry_count: int
    central_directory_offset: int
    central_directory_size: int
    comment_length: int
    offset: int  # EOCD 自身在字节源中的位置


@dataclass(frozen=True)
class CentralDirectoryEntry:
    name: str
    raw_name: bytes
    compressed_size: int
    uncompressed_size: int
    local_header_offset: int
    compression_method: int
    crc32: int
    flags: int = 0

    @property
    def encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTED)


@dataclass(frozen=True)
class LocalFileHeader:
    raw_name: bytes
    extra_length: int
    data_offset: int


def find_eocd(source: ByteSource) -> EndOfCentralDirectory:
    """从尾部反向扫描 EOCD 签名

    先尝试无注释的最小记录，失败后在 (22 + 65535) 字节窗口内反向查找，
    要求 签名位置 + 22 + 注释长度 恰好等于窗口末尾。
    """
    if source.size < EOCD_SIZE:
        raise ArchiveMalformed(f"字节源过短，不足一个 EOCD 记录: {source.size} 字节 ({source.name})")

    tail = source.read_at(source.size - EOCD_SIZE, EOCD_SIZE)
    if tail.startswith(EOCD_SIGNATURE) and _EOCD.unpack(tail)[7] == 0:
        return _parse_eocd(tail, source.size - EOCD_SIZE, source)

    window_size = min(source.size, MAX_EOCD_SEARCH)
    window_start = source.size - window_size
    window = source.read_at(window_start, window_size)

    pos = window.rfind(EOCD_SIGNATURE, 0, window_size - EOCD_SIZE + len(EOCD_SIGNATURE))
    while pos >= 0:
        comment_length = _EOCD.unpack_from(window, pos)[7]
        if pos + EOCD_SIZE + comment_length == window_size:
            return _parse_eocd(window[pos:pos + EOCD_SIZE], window_start + pos, source)
        pos = window.rfind(EOCD_SIGNATURE, 0, pos)

    raise ArchiveMalformed(f"未找到 EOCD 签名 ({source.name})")


def _parse_eocd(buf: bytes, offset: int, source: ByteSource) -> EndOfCentralDirectory:
    (_, disk_no, cd_disk, disk_entries, total_entries,
     cd_size, cd_offset, comment_length) = _EOCD.unpack(buf)

    if disk_no != 0 or cd_disk != 0 or disk_entries != total_entries:
        raise ArchiveMalformed(f"不支持分卷归档 ({source.name})")
    if total_entries == 0xFFFF or cd_size == 0xFFFFFFFF or cd_offset == 0xFFFFFFFF:
        raise ArchiveMalformed(f"不支持 ZIP64 归档 ({source.name})")
    if cd_offset + cd_size > offset:
        raise ArchiveMalformed(
            f"中央目录越界: offset={cd_offset} size={cd_size} eocd={offset} ({source.name})",
        )

    return EndOfCentralDirectory(
        entry_count=total_entries,
        central_directory_offset=cd_offset,
        central_directory_size=cd_size,
        comment_length=comment_length,
        offset=offset,
    )


def iter_central_directory(
    buffer: bytes, entry_count: int, *, source_name: str = "",
) -> Iterator[CentralDirectoryEntry]:
    """顺序解析 entry_count 条 CDFH，每条记录自描述其变长字段长度"""
    pos = 0
    for index in range(entry_count):
        if pos + CDFH_SIZE > len(buffer):
            raise ArchiveMalformed(f"中央目录第 {index} 条记录被截断 ({source_name})")
        fields = _CDFH.unpack_from(buffer, pos)
        if fields[0] != CDFH_SIGNATURE:
            raise ArchiveMalformed(f"中央目录第 {index} 条记录签名无效 ({source_name})")

        (_, _made_by, _needed, flags, method, _mtime, _mdate, crc, compressed_size,
         uncompressed_size, name_len, extra_len, comment_len, _disk_start,
         _int_attr, _ext_attr, lfh_offset) = fields

        total = CDFH_SIZE + name_len + extra_len + comment_len
        if pos + total > len(buffer):
            raise ArchiveMalformed(f"中央目录第 {index} 条记录变长字段越界 ({source_name})")

        raw_name = bytes(buffer[pos + CDFH_SIZE:pos + CDFH_SIZE + name_len])
        yield CentralDirectoryEntry(
            name=decode_name(raw_name, flags),
            raw_name=raw_name,
            compressed_size=compressed_size,
            uncompressed_size=uncompressed_size,
            local_header_offset=lfh_offset,
            compression_method=method,
            crc32=crc,
            flags=flags,
        )
        pos += total


def read_local_header(source: ByteSource, entry: CentralDirectoryEntry) -> LocalFileHeader:
    """重新读取 LFH，得到压缩数据的精确起始位置

    LFH 的文件名必须与 CDFH 逐字节一致，大小写或规范化差异一律视为损坏。
    """
    buf = source.read_at(entry.local_header_offset, LFH_SIZE)
    fields = _LFH.unpack(buf)
    if fields[0] != LFH_SIGNATURE:
        raise ArchiveMalformed(f"本地文件头签名无效: {entry.name} ({source.name})")
    name_len, extra_len = fields[9], fields[10]

    raw_name = source.read_at(entry.local_header_offset + LFH_SIZE, name_len)
    if raw_name != entry.raw_name:
        raise ArchiveMalformed(
            f"本地文件头文件名与中央目录不一致: {raw_name!r} != {entry.raw_name!r} ({source.name})",
        )

    data_offset = entry.local_header_offset + LFH_SIZE + name_len + extra_len
    if data_offset + entry.compressed_size > source.size:
        raise ArchiveMalformed(f"条目数据越界: {entry.name} ({source.name})")
    return LocalFileHeader(raw_name=raw_name, extra_length=extra_len, data_offset=data_offset)


def decode_name(raw: bytes, flags: int) -> str:
    # 未设置 UTF-8 标志时按规范使用 CP437
    if flags & FLAG_UTF8:
        return raw.decode("utf-8", errors="replace")
    return raw.decode("cp437")

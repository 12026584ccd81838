"""可随机访问的字节源

所有读取都显式携带偏移量（read_at），不依赖隐式的流位置，
同一归档可反复查询多个条目而无需重新打开。

reads 记录每次读取的 (offset, length)，用于验证"仅存在性检查不读数据区"。
"""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import BinaryIO, Union

from modpull.core.exceptions import ArchiveMalformed

logger = logging.getLogger(__name__)

SourceLike = Union[str, os.PathLike, bytes, bytearray, memoryview, BinaryIO]


class ByteSource:
    """包装一个可 seek 的二进制对象（本地文件或内存缓冲）"""

    def __init__(self, fileobj: BinaryIO, *, name: str = "<memory>", owned: bool = False) -> None:
        self._fileobj = fileobj
        self._owned = owned
        self.name = name
        self.size = fileobj.seek(0, io.SEEK_END)
        self.reads: list[tuple[int, int]] = []

    @classmethod
    def open(cls, source: SourceLike) -> ByteSource:
        """从路径、字节或已打开的二进制文件构造字节源

        路径会被打开并由 ByteSource 负责关闭；传入的文件对象由调用方负责关闭。
        """
        if isinstance(source, ByteSource):
            return source
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls(io.BytesIO(bytes(source)), owned=True)
        if isinstance(source, (str, os.PathLike)):
            path = Path(source)
            return cls(open(path, "rb"), name=str(path), owned=True)  # noqa: SIM115
        if hasattr(source, "seek") and hasattr(source, "read"):
            return cls(source, name=getattr(source, "name", "<stream>"))
        raise TypeError(f"无法作为字节源: {type(source).__name__}")

    def read_at(self, offset: int, length: int) -> bytes:
        """从绝对偏移读取恰好 length 字节，越界视为归档损坏"""
        if offset < 0 or length < 0 or offset + length > self.size:
            raise ArchiveMalformed(
                f"读取越界: offset={offset} length={length} size={self.size} ({self.name})",
            )
        self._fileobj.seek(offset)
        data = self._fileobj.read(length)
        self.reads.append((offset, length))
        if len(data) != length:
            raise ArchiveMalformed(f"读取不足: 期望 {length} 字节, 实际 {len(data)} ({self.name})")
        return data

    @property
    def bytes_read(self) -> int:
        return sum(length for _, length in self.reads)

    def close(self) -> None:
        if self._owned:
            self._fileobj.close()

    def __enter__(self) -> ByteSource:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

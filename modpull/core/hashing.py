"""内容摘要

下载器在流式接收时增量计算，校验和缓存对本地文件计算，两者使用同一算法，
摘要统一以小写十六进制字符串表示。

默认算法为 xxh64（种子 0），与远程模组数据库 Checksums 字段一致；
其余算法名交给 hashlib。
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from pathlib import Path
from typing import Any

import xxhash

CHUNK_SIZE = 64 * 1024
DEFAULT_ALGORITHM = "xxh64"

DigestFn = Callable[[Path], str]

_XXHASH_ALGORITHMS: dict[str, Callable[[], Any]] = {
    "xxh32": xxhash.xxh32,
    "xxh64": xxhash.xxh64,
    "xxh3_64": xxhash.xxh3_64,
    "xxh3_128": xxhash.xxh3_128,
}


def is_supported(algorithm: str) -> bool:
    return algorithm in _XXHASH_ALGORITHMS or algorithm in hashlib.algorithms_available


def new_hasher(algorithm: str = DEFAULT_ALGORITHM) -> Any:
    factory = _XXHASH_ALGORITHMS.get(algorithm)
    if factory is not None:
        return factory()
    return hashlib.new(algorithm)


def hash_bytes(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


def hash_file(path: Path, algorithm: str = DEFAULT_ALGORITHM) -> str:
    hasher = new_hasher(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def file_digest_fn(algorithm: str = DEFAULT_ALGORITHM) -> DigestFn:
    """供 ChecksumCache.get_or_compute 使用的纯计算函数"""

    def compute(path: Path) -> str:
        return hash_file(path, algorithm)

    return compute

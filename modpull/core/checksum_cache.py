"""校验和缓存

职责:
- 以 (路径, 文件大小, 修改时间) 为指纹缓存文件摘要
- 指纹完全一致才算命中，任何不一致都重新计算并覆盖记录
- 持久化到应用状态目录，跨进程复用

缓存策略:
  - 只用 stat 信息判断是否变化，不读文件内容
  - 摘要如何计算由调用方传入的 compute_fn 决定，缓存本身不关心
  - 持久化文件损坏或不可读时退化为空缓存，绝不致命
  - 写入在锁内完成，并发计算同一路径不会丢失更新
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from pathlib import Path

from modpull.core.hashing import DEFAULT_ALGORITHM
from modpull.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

STORE_VERSION = 1


@dataclass(frozen=True)
class CachedHash:
    """文件最后一次计算摘要时的快照"""

    size: int
    mtime_ns: int
    digest: str


def _cache_key(path: str | Path) -> str:
    return str(Path(path).resolve())


class ChecksumCache:
    """持久化的摘要缓存"""

    def __init__(self, store_path: str | Path | None, algorithm: str = DEFAULT_ALGORITHM) -> None:
        """
        参数:
            store_path: 持久化文件路径，None 表示仅内存
            algorithm: 摘要算法名；持久化文件中的算法不同则整体作废
        """
        self.store_path = Path(store_path) if store_path else None
        self.algorithm = algorithm
        self._lock = threading.Lock()
        self._entries: dict[str, CachedHash] | None = None
        self._dirty = False
        self.hits = 0
        self.misses = 0

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def get_or_compute(self, path: str | Path, compute_fn: Callable[[Path], str]) -> str:
        """返回文件摘要，指纹一致时跳过计算"""
        p = Path(path)
        key = _cache_key(p)
        st = p.stat()

        with self._lock:
            cached = self._load().get(key)
            if cached and cached.size == st.st_size and cached.mtime_ns == st.st_mtime_ns:
                self.hits += 1
                return cached.digest
            self.misses += 1

        logger.debug("计算摘要: %s", p)
        digest = compute_fn(p)
        self._store(key, CachedHash(st.st_size, st.st_mtime_ns, digest))
        return digest

    def lookup(self, path: str | Path) -> CachedHash | None:
        with self._lock:
            return self._load().get(_cache_key(path))

    # ------------------------------------------------------------------
    # 失效
    # ------------------------------------------------------------------

    def invalidate(self, path: str | Path) -> bool:
        """清除指定路径的记录，返回是否存在"""
        with self._lock:
            removed = self._load().pop(_cache_key(path), None) is not None
            self._dirty = self._dirty or removed
        return removed

    def prune(self, existing: Iterable[str | Path]) -> int:
        """删除不在 existing 中的记录，返回删除数量"""
        keep = {_cache_key(p) for p in existing}
        with self._lock:
            entries = self._load()
            stale = [k for k in entries if k not in keep]
            for k in stale:
                del entries[k]
            if stale:
                self._dirty = True
        if stale:
            logger.info("清理过期缓存记录: %d 条", len(stale))
        return len(stale)

    def clear(self) -> None:
        """清空内存记录并删除持久化文件"""
        with self._lock:
            self._entries = {}
            self._dirty = False
            if self.store_path and self.store_path.exists():
                self.store_path.unlink()

    # ------------------------------------------------------------------
    # 持久化
    # ------------------------------------------------------------------

    def save(self) -> None:
        """有变更时原子写回持久化文件"""
        if self.store_path is None:
            return
        with self._lock:
            if not self._dirty:
                return
            payload = {
                "version": STORE_VERSION,
                "algorithm": self.algorithm,
                "entries": {k: asdict(v) for k, v in self._load().items()},
            }
            atomic_write(self.store_path, json.dumps(payload, indent=2, ensure_ascii=False))
            os.chmod(self.store_path, 0o600)
            self._dirty = False
        logger.debug("校验和缓存已保存: %s", self.store_path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._load())

    def _store(self, key: str, record: CachedHash) -> None:
        with self._lock:
            self._load()[key] = record
            self._dirty = True

    def _load(self) -> dict[str, CachedHash]:
        """惰性加载；调用方必须持有锁"""
        if self._entries is None:
            self._entries = self._read_store()
        return self._entries

    def _read_store(self) -> dict[str, CachedHash]:
        if self.store_path is None or not self.store_path.exists():
            return {}
        try:
            payload = json.loads(self.store_path.read_text(encoding="utf-8"))
            if payload.get("version") != STORE_VERSION or payload.get("algorithm") != self.algorithm:
                logger.info("校验和缓存版本或算法不匹配，忽略: %s", self.store_path)
                return {}
            return {
                key: CachedHash(int(v["size"]), int(v["mtime_ns"]), str(v["digest"]))
                for key, v in payload["entries"].items()
            }
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("校验和缓存不可读，按空缓存处理: %s (%s)", self.store_path, e)
            return {}

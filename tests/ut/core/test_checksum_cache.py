"""校验和缓存测试 - 指纹命中、失效与持久化"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import pytest

from modpull.core.checksum_cache import ChecksumCache
from modpull.core.hashing import file_digest_fn, hash_bytes


class CountingDigest:
    def __init__(self) -> None:
        self.calls = 0
        self._compute = file_digest_fn()

    def __call__(self, path: Path) -> str:
        self.calls += 1
        return self._compute(path)


@pytest.fixture()
def archive(tmp_path: Path) -> Path:
    path = tmp_path / "mods" / "Mod.zip"
    path.parent.mkdir()
    path.write_bytes(b"archive-bytes")
    return path


class TestGetOrCompute:
    def test_hit_skips_recompute(self, tmp_path: Path, archive: Path) -> None:
        cache = ChecksumCache(tmp_path / "cache.json")
        digest_fn = CountingDigest()

        first = cache.get_or_compute(archive, digest_fn)
        second = cache.get_or_compute(archive, digest_fn)

        assert first == second == hash_bytes(b"archive-bytes")
        assert digest_fn.calls == 1
        assert (cache.hits, cache.misses) == (1, 1)

    def test_size_change_forces_recompute(self, tmp_path: Path, archive: Path) -> None:
        cache = ChecksumCache(None)
        digest_fn = CountingDigest()
        cache.get_or_compute(archive, digest_fn)

        st = archive.stat()
        archive.write_bytes(b"different-length-content")
        os.utime(archive, ns=(st.st_atime_ns, st.st_mtime_ns))

        assert cache.get_or_compute(archive, digest_fn) == hash_bytes(b"different-length-content")
        assert digest_fn.calls == 2

    def test_mtime_change_forces_recompute(self, tmp_path: Path, archive: Path) -> None:
        cache = ChecksumCache(None)
        digest_fn = CountingDigest()
        cache.get_or_compute(archive, digest_fn)

        st = archive.stat()
        os.utime(archive, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))

        cache.get_or_compute(archive, digest_fn)
        assert digest_fn.calls == 2

    def test_compute_fn_is_opaque(self, archive: Path) -> None:
        cache = ChecksumCache(None)
        assert cache.get_or_compute(archive, lambda _p: "cafebabe") == "cafebabe"
        assert cache.lookup(archive).digest == "cafebabe"

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        cache = ChecksumCache(None)
        with pytest.raises(FileNotFoundError):
            cache.get_or_compute(tmp_path / "nope.zip", CountingDigest())

    def test_concurrent_updates_all_recorded(self, tmp_path: Path) -> None:
        cache = ChecksumCache(tmp_path / "cache.json")
        paths = []
        for i in range(16):
            p = tmp_path / f"m{i}.zip"
            p.write_bytes(bytes([i]) * 100)
            paths.append(p)

        threads = [
            threading.Thread(target=cache.get_or_compute, args=(p, file_digest_fn()))
            for p in paths for _ in range(2)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 16


class TestPersistence:
    def test_survives_restart(self, tmp_path: Path, archive: Path) -> None:
        store = tmp_path / "state" / "cache.json"
        first = ChecksumCache(store)
        first.get_or_compute(archive, CountingDigest())
        first.save()

        digest_fn = CountingDigest()
        second = ChecksumCache(store)
        second.get_or_compute(archive, digest_fn)
        assert digest_fn.calls == 0
        assert second.hits == 1

    def test_store_format(self, tmp_path: Path, archive: Path) -> None:
        store = tmp_path / "cache.json"
        cache = ChecksumCache(store)
        cache.get_or_compute(archive, lambda _p: "abc")
        cache.save()

        payload = json.loads(store.read_text(encoding="utf-8"))
        assert payload["version"] == 1
        assert payload["algorithm"] == "xxh64"
        record = payload["entries"][str(archive.resolve())]
        assert record["digest"] == "abc"
        assert record["size"] == archive.stat().st_size

    @pytest.mark.parametrize("content", ["{not json", "[]", '{"version": 1}', ""])
    def test_corrupt_store_is_empty(self, tmp_path: Path, archive: Path, content: str) -> None:
        store = tmp_path / "cache.json"
        store.write_text(content, encoding="utf-8")
        cache = ChecksumCache(store)
        digest_fn = CountingDigest()
        cache.get_or_compute(archive, digest_fn)
        assert digest_fn.calls == 1
        cache.save()
        assert json.loads(store.read_text(encoding="utf-8"))["entries"]

    def test_algorithm_change_discards_store(self, tmp_path: Path, archive: Path) -> None:
        store = tmp_path / "cache.json"
        cache = ChecksumCache(store, algorithm="xxh64")
        cache.get_or_compute(archive, lambda _p: "x")
        cache.save()

        assert len(ChecksumCache(store, algorithm="sha256")) == 0

    def test_deleted_store_recomputes(self, tmp_path: Path, archive: Path) -> None:
        store = tmp_path / "cache.json"
        cache = ChecksumCache(store)
        cache.get_or_compute(archive, CountingDigest())
        cache.save()
        store.unlink()

        digest_fn = CountingDigest()
        ChecksumCache(store).get_or_compute(archive, digest_fn)
        assert digest_fn.calls == 1

    def test_save_without_changes_writes_nothing(self, tmp_path: Path) -> None:
        store = tmp_path / "cache.json"
        ChecksumCache(store).save()
        assert not store.exists()


class TestInvalidation:
    def test_invalidate(self, archive: Path) -> None:
        cache = ChecksumCache(None)
        cache.get_or_compute(archive, lambda _p: "x")
        assert cache.invalidate(archive) is True
        assert cache.invalidate(archive) is False
        assert cache.lookup(archive) is None

    def test_prune(self, tmp_path: Path, archive: Path) -> None:
        other = tmp_path / "other.zip"
        other.write_bytes(b"o")
        cache = ChecksumCache(None)
        cache.get_or_compute(archive, lambda _p: "a")
        cache.get_or_compute(other, lambda _p: "o")

        assert cache.prune([archive]) == 1
        assert cache.lookup(other) is None
        assert cache.lookup(archive) is not None

    def test_clear_removes_store(self, tmp_path: Path, archive: Path) -> None:
        store = tmp_path / "cache.json"
        cache = ChecksumCache(store)
        cache.get_or_compute(archive, lambda _p: "a")
        cache.save()
        cache.clear()
        assert not store.exists()
        assert len(cache) == 0

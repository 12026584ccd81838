"""共享测试夹具: 构造 ZIP 归档、清单与假的网络传输层"""

from __future__ import annotations

import io
import threading
import time
import urllib.error
import zipfile
from collections.abc import Callable
from typing import Any

import pytest
import yaml


def build_zip(
    entries: dict[str, bytes] | list[tuple[str, bytes]],
    compression: int = zipfile.ZIP_DEFLATED,
) -> bytes:
    buf = io.BytesIO()
    items = entries.items() if isinstance(entries, dict) else entries
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, data in items:
            zf.writestr(name, data)
    return buf.getvalue()


def build_manifest(
    name: str,
    version: str,
    deps: dict[str, str | None] | None = None,
    optional: dict[str, str | None] | None = None,
) -> bytes:
    entry: dict[str, Any] = {"Name": name, "Version": version}
    if deps:
        entry["Dependencies"] = [_dep(n, v) for n, v in deps.items()]
    if optional:
        entry["OptionalDependencies"] = [_dep(n, v) for n, v in optional.items()]
    return yaml.safe_dump([entry], sort_keys=False).encode("utf-8")


def _dep(name: str, version: str | None) -> dict[str, str]:
    return {"Name": name, "Version": version} if version else {"Name": name}


def build_mod(name: str, version: str, deps=None, optional=None) -> bytes:
    """带 everest.yaml 清单的模组归档"""
    return build_zip({
        "everest.yaml": build_manifest(name, version, deps, optional),
        f"{name}.dll": b"\x4d\x5a" + name.encode() * 16,
    })


class FakeResponse:
    """模拟 urlopen 的响应对象"""

    def __init__(
        self,
        body: bytes,
        *,
        status: int = 200,
        content_length: int | None = None,
        chunk_delay: float = 0.0,
        on_read: Callable[[], None] | None = None,
    ) -> None:
        self._stream = io.BytesIO(body)
        self.status = status
        length = len(body) if content_length is None else content_length
        self.headers = {"Content-Length": str(length)}
        self._chunk_delay = chunk_delay
        self._on_read = on_read

    def read(self, n: int = -1) -> bytes:
        if self._on_read is not None:
            self._on_read()
        if self._chunk_delay:
            time.sleep(self._chunk_delay)
        return self._stream.read(n)

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


class FakeTransport:
    """按 URL 返回预设结果的传输层，并记录调用顺序与并发峰值

    routes 的值可以是:
      - bytes: 成功响应
      - int: 该状态码的 HTTPError
      - Exception 实例: 直接抛出
      - callable: 调用后返回响应对象
    未配置的 URL 视为网络不可达。
    """

    def __init__(self, routes: dict[str, Any] | None = None, *, delay: float = 0.0) -> None:
        self.routes: dict[str, Any] = dict(routes or {})
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, url: str, timeout: float) -> Any:
        with self._lock:
            self.calls.append(url)
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            route = self.routes.get(url)
            if route is None:
                raise urllib.error.URLError("connection refused")
            if isinstance(route, int):
                raise urllib.error.HTTPError(url, route, "error", {}, None)  # type: ignore[arg-type]
            if isinstance(route, BaseException):
                raise route
            if callable(route):
                return route()
            return FakeResponse(route)
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture()
def make_zip() -> Callable[..., bytes]:
    return build_zip


@pytest.fixture()
def make_manifest() -> Callable[..., bytes]:
    return build_manifest


@pytest.fixture()
def make_mod() -> Callable[..., bytes]:
    return build_mod


@pytest.fixture()
def transport_factory() -> Callable[..., FakeTransport]:
    return FakeTransport


@pytest.fixture()
def response_factory() -> Callable[..., FakeResponse]:
    return FakeResponse

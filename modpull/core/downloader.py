"""多镜像下载器

职责:
- 将下载链接展开为按优先级排序的候选镜像
- 单个包严格按优先级依次尝试，失败（网络错误、非成功状态码、响应体截断、
  超时、摘要不符）即切换下一个镜像
- 流式接收时增量计算摘要，缓冲区与摘要同时可用，无需二次遍历
- 多个包在有界线程池中并发下载，单个包失败不影响兄弟下载
- 支持协作式取消：停止调度新下载，在途下载在下一个数据块处退出并丢弃缓冲

响应体缓冲在内存中而不落盘，峰值内存约为 job_limit × 最大在途响应体。
"""

from __future__ import annotations

import http.client
import logging
import threading
import time
import urllib.error
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import IO

from modpull.core.config import validate_job_limit
from modpull.core.exceptions import (
    AllMirrorsExhausted,
    DownloadError,
    FetchCancelled,
    ModPullError,
    ValidationError,
)
from modpull.core.hashing import CHUNK_SIZE, DEFAULT_ALGORITHM, new_hasher
from modpull.core.mirrors import MirrorPriority
from modpull.utils.net import open_url

logger = logging.getLogger(__name__)

# 传输层：接受 (url, timeout)，返回带 status / headers / read(n) 的响应对象
Transport = Callable[[str, float], IO[bytes]]


@dataclass(frozen=True)
class FetchRequest:
    package_id: str
    url: str
    expected_digests: tuple[str, ...] = ()


@dataclass(frozen=True)
class MirrorFailure:
    mirror_id: str
    url: str
    reason: str


@dataclass(frozen=True)
class FetchResult:
    """完整的响应体及其摘要；由调用方决定持久化或丢弃"""

    package_id: str
    data: bytes = field(repr=False)
    digest: str
    mirror_id: str
    url: str
    failures: tuple[MirrorFailure, ...] = ()


@dataclass(frozen=True)
class FetchOutcome:
    """批量下载中单个包的结果（成功或失败原因）"""

    package_id: str
    result: FetchResult | None = None
    error: ModPullError | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class _MirrorError(Exception):
    """单个镜像尝试失败，仅在下载器内部流转"""


class MirrorDownloader:
    """按镜像优先级下载，并以 job_limit 限制并发"""

    def __init__(
        self,
        priority: MirrorPriority | None = None,
        job_limit: int = 4,
        *,
        timeout: float = 30.0,
        digest_algorithm: str = DEFAULT_ALGORITHM,
        transport: Transport | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.priority = priority or MirrorPriority()
        self.job_limit = validate_job_limit(job_limit)
        self.timeout = timeout
        self.digest_algorithm = digest_algorithm
        self._transport = transport or open_url
        self._cancel = cancel_event or threading.Event()

    # ------------------------------------------------------------------
    # 取消
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # 单包
    # ------------------------------------------------------------------

    def fetch(self, request: FetchRequest) -> FetchResult:
        """下载单个包

        Raises:
            AllMirrorsExhausted: 所有候选均失败，按优先级携带每个镜像的原因
            FetchCancelled: 下载被取消
        """
        failures: list[MirrorFailure] = []
        for mirror_id, url in self.priority.candidate_urls(request.url):
            if self.cancelled:
                raise FetchCancelled(request.package_id)
            context = {"package_id": request.package_id, "mirror_id": mirror_id, "url": url}
            logger.info("下载 %s: [%s] %s", request.package_id, mirror_id, url, extra=context)
            try:
                data, digest = self._download(request, url)
            except _MirrorError as e:
                logger.warning(
                    "镜像失败 %s: [%s] %s", request.package_id, mirror_id, e, extra=context,
                )
                failures.append(MirrorFailure(mirror_id, url, str(e)))
                continue
            logger.info(
                "下载完成 %s: %d 字节, 摘要 %s", request.package_id, len(data), digest,
                extra=context,
            )
            return FetchResult(
                package_id=request.package_id, data=data, digest=digest,
                mirror_id=mirror_id, url=url, failures=tuple(failures),
            )
        raise AllMirrorsExhausted(request.package_id, failures)

    def _download(self, request: FetchRequest, url: str) -> tuple[bytes, str]:
        """从单个镜像流式下载，返回 (响应体, 摘要)"""
        deadline = time.monotonic() + self.timeout
        hasher = new_hasher(self.digest_algorithm)
        chunks: list[bytes] = []
        received = 0
        expected_length: int | None = None

        try:
            with self._transport(url, self.timeout) as response:
                status = getattr(response, "status", 200)
                if not 200 <= status < 300:
                    raise _MirrorError(f"HTTP {status}")
                expected_length = _content_length(response)

                while True:
                    if self.cancelled:
                        # 丢弃部分缓冲，不写入磁盘或缓存
                        chunks.clear()
                        raise FetchCancelled(request.package_id)
                    if time.monotonic() > deadline:
                        raise _MirrorError(f"超时（{self.timeout}秒）")
                    chunk = response.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    hasher.update(chunk)
                    chunks.append(chunk)
                    received += len(chunk)
        except urllib.error.HTTPError as e:
            raise _MirrorError(f"HTTP {e.code}") from e
        except urllib.error.URLError as e:
            raise _MirrorError(f"网络错误: {e.reason}") from e
        except TimeoutError as e:
            raise _MirrorError(f"超时（{self.timeout}秒）") from e
        except (http.client.HTTPException, OSError) as e:
            raise _MirrorError(f"连接异常: {e}") from e
        except (ValidationError, ValueError) as e:
            raise _MirrorError(f"无效 URL: {e}") from e

        if expected_length is not None and received != expected_length:
            raise _MirrorError(f"响应体截断: 期望 {expected_length} 字节, 实际 {received}")

        digest = hasher.hexdigest()
        if request.expected_digests and not _digest_matches(digest, request.expected_digests):
            raise _MirrorError(f"摘要不符: {digest}")
        return b"".join(chunks), digest

    # ------------------------------------------------------------------
    # 批量
    # ------------------------------------------------------------------

    def fetch_many(self, requests: Sequence[FetchRequest]) -> dict[str, FetchOutcome]:
        """并发下载多个包，全部结束后返回按请求顺序排列的结果

        任一包失败不会中止其他在途下载。KeyboardInterrupt 触发取消:
        排队中的下载不再开始，在途下载自行退出，然后重新抛出中断。
        """
        outcomes: dict[str, FetchOutcome] = {}
        if not requests:
            return outcomes

        with ThreadPoolExecutor(max_workers=self.job_limit) as executor:
            futures: dict[Future[FetchResult], FetchRequest] = {
                executor.submit(self.fetch, req): req for req in requests
            }
            try:
                for future in as_completed(futures):
                    req = futures[future]
                    outcomes[req.package_id] = self._collect(req, future)
            except KeyboardInterrupt:
                logger.warning("收到中断，取消剩余下载")
                self.cancel()
                for future in futures:
                    future.cancel()
                raise

        failed = [o.package_id for o in outcomes.values() if not o.ok]
        if failed:
            logger.warning(
                "下载汇总: %d 成功, %d 失败 (%s)",
                len(outcomes) - len(failed), len(failed), ", ".join(failed),
            )
        return {req.package_id: outcomes[req.package_id] for req in requests}

    @staticmethod
    def _collect(req: FetchRequest, future: Future[FetchResult]) -> FetchOutcome:
        try:
            return FetchOutcome(req.package_id, result=future.result())
        except ModPullError as e:
            return FetchOutcome(req.package_id, error=e)
        except Exception as e:
            logger.exception("下载 %s 时出现未预期错误", req.package_id)
            error = DownloadError(f"{req.package_id} 下载失败: {e}")
            error.__cause__ = e
            return FetchOutcome(req.package_id, error=error)


def _content_length(response: IO[bytes]) -> int | None:
    headers = getattr(response, "headers", None)
    value = headers.get("Content-Length") if headers is not None else None
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _digest_matches(digest: str, expected: Sequence[str]) -> bool:
    return any(digest.lower() == e.lower() for e in expected)

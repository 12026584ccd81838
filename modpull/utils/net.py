"""网络工具 - URL 安全校验与请求构造"""

from __future__ import annotations

import urllib.request
from typing import IO
from urllib.parse import urlparse

from modpull import __version__
from modpull.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))

USER_AGENT = f"modpull/{__version__}"


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def open_url(url: str, timeout: float) -> IO[bytes]:
    """打开 http(s) 连接并返回响应对象（调用方负责关闭）

    timeout 作用于每次 socket 操作，超时抛出 TimeoutError。
    """
    validate_url_scheme(url, context="open_url")
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    return urllib.request.urlopen(request, timeout=timeout)  # nosec B310

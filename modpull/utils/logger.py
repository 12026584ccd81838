"""modpull 日志配置

日志一律写到 stderr，stdout 只留给安装计划与列表输出。
JSON 模式供 CI 使用；下载器通过 extra= 附带的包名、镜像等上下文
会作为独立字段输出，便于按包或按镜像过滤。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

# 通过 logger.xxx(..., extra={...}) 附加、需要在 JSON 中保留的字段
CONTEXT_FIELDS = ("package_id", "mirror_id", "url")


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出格式:
        {
            "timestamp": "2024-01-01T12:00:00+00:00",
            "level": "WARNING",
            "logger": "modpull.core.downloader",
            "message": "镜像失败 SpeedrunTool: [jade] HTTP 503",
            "module": "downloader",
            "function": "fetch",
            "line": 42,
            "package_id": "SpeedrunTool",   (仅在附带上下文时)
            "mirror_id": "jade",
            "exception": "traceback..."     (仅在有异常时)
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            # 记录事件发生时间而非格式化时间
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR, CRITICAL），无法识别时为 INFO
        json_output: 为 True 时使用 JSON 格式，否则使用人类可读格式

    重复调用只保留最后一次的 handler。
    """
    root = logging.getLogger()
    reset_logging()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        fmt = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
        handler.setFormatter(logging.Formatter(fmt))

    root.addHandler(handler)


def reset_logging() -> None:
    """清理根日志器上所有已注册的 handlers，恢复到未配置状态"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

"""cratemirror 日志配置

日志统一写到 stderr，stdout 只留给同步汇总和 --json 输出。
两种格式:
  - 文本: 时间、级别、模块、消息，给人看
  - JSON: 每条一行，给 CI 或日志采集使用；编排器通过 extra 附带的
          包上下文（package / state）会作为独立字段输出
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# 通过 logger.xxx(..., extra={...}) 附带的同步上下文字段
CONTEXT_FIELDS = ("package", "state")

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """单行 JSON 格式器

    固定字段: timestamp, level, logger, message, module, line；
    有异常时附加 exception，有同步上下文时附加 CONTEXT_FIELDS 中的字段。
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def resolve_level(name: str) -> int:
    """日志级别名 -> logging 常量，未知名称抛 ValueError"""
    upper = name.strip().upper()
    if upper not in LEVEL_NAMES:
        raise ValueError(f"未知日志级别 {name!r}，可选: {', '.join(LEVEL_NAMES)}")
    return getattr(logging, upper)


def setup_logging(
    level: str = "INFO", json_output: bool = False, stream: IO[str] | None = None,
) -> None:
    """配置根日志器，重复调用时替换已有 handler"""
    reset_logging()
    root = logging.getLogger()
    try:
        root.setLevel(resolve_level(level))
        bad_level = None
    except ValueError as e:
        root.setLevel(logging.INFO)
        bad_level = e

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    if bad_level is not None:
        logging.getLogger(__name__).warning("%s，已使用 INFO", bad_level)


def reset_logging() -> None:
    """移除根日志器上的全部 handler（测试之间调用）"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

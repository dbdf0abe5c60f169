"""日志配置模块：统一全局日志格式，并提供虚拟盘操作的结构化事件日志。

- 控制台使用彩色输出，文件按天滚动；``LOG_JSON`` 打开时两者都输出 JSON；
- 每条日志都带上当前请求的 request_id（由 RequestIdMiddleware 写入上下文）；
- 业务代码通过 ``log_event("drive.rename.start", root=..., tenant=...)`` 记录操作阶段，
  文本格式下渲染为 ``key=value``，JSON 格式下字段原样输出。
"""

import json
import logging
import logging.config
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

from .config import Settings, get_settings

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_STANDARD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


class _TZFormatter(logging.Formatter):
    """按 Settings.timezone 渲染时间；未提供 datefmt 时输出带毫秒的 ISO-8601。"""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: D401
        dt = datetime.fromtimestamp(record.created, get_settings().timezone_info)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(sep=" ", timespec="milliseconds")


class ColorFormatter(_TZFormatter):
    """ANSI 彩色格式化器：根据不同日志级别渲染不同颜色，便于快速辨识。"""

    RESET = "\033[0m"
    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: Optional[bool] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_colors = sys.stderr.isatty() if use_colors is None else use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelno) if self.use_colors else None
        return f"{color}{message}{self.RESET}" if color else message


class JsonFormatter(_TZFormatter):
    """Structured JSON formatter; ``log_event`` fields are emitted as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "request_id": getattr(record, "request_id", None),
        }
        event = getattr(record, "event", None)
        if event:
            payload["event"] = event
            payload.update(getattr(record, "fields", {}) or {})
        else:
            payload["msg"] = record.getMessage()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class RequestIdFilter(logging.Filter):
    """Injects request_id from contextvars into every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.request_id = _request_id_ctx.get()
        return True


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    """根据配置生成 dictConfig 字典。"""
    formatter = "json" if settings.log_json else "standard"
    handler_defaults = {"level": settings.log_level, "filters": ["request_id"]}
    app_handlers = {"handlers": ["default", "file"], "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"()": f"{__name__}.ColorFormatter", "fmt": _STANDARD_FORMAT},
            "plain": {"()": f"{__name__}._TZFormatter", "fmt": _STANDARD_FORMAT},
            "json": {"()": f"{__name__}.JsonFormatter"},
        },
        "filters": {"request_id": {"()": f"{__name__}.RequestIdFilter"}},
        "handlers": {
            "default": {**handler_defaults, "class": "logging.StreamHandler", "formatter": formatter},
            "file": {
                **handler_defaults,
                "class": "logging.handlers.TimedRotatingFileHandler",
                "formatter": "json" if settings.log_json else "plain",
                "filename": str(settings.log_file_path),
                "when": "midnight",
                "backupCount": 14,
                "encoding": "utf-8",
                "delay": True,
            },
        },
        "loggers": {
            "uvicorn": {**app_handlers, "level": settings.log_level},
            "uvicorn.access": {**app_handlers, "level": settings.log_level},
            # boto3 的 DEBUG 日志过于冗长
            "botocore": {**app_handlers, "level": "WARNING"},
            "app": {**app_handlers, "level": settings.log_level},
        },
        "root": {"handlers": ["default", "file"], "level": settings.log_level},
    }


def setup_logging() -> None:
    """初始化日志系统，确保项目所有模块使用统一的输出格式与级别。"""
    settings = get_settings()
    settings.log_directory.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(settings))


logger = logging.getLogger("app")


def log_event(event: str, level: int = logging.INFO, exc_info: bool = False, **fields: Any) -> None:
    """记录一条操作事件：``drive.<op>.<phase> k1=v1 k2=v2``。"""
    rendered = " ".join(f"{k}={v}" for k, v in fields.items())
    logger.log(
        level,
        "%s %s",
        event,
        rendered,
        exc_info=exc_info,
        extra={"event": event, "fields": fields},
    )


def set_request_id(request_id: Optional[str]) -> None:
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()

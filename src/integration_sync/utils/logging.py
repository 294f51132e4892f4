"""
日志配置模块 - 使用 structlog 提供结构化日志

同步运行通过 bind_context 绑定 config_id / config_name / target_collection，
同一次运行内的所有事件都会带上这些字段。
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    配置结构化日志

    参数:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        json_format: 输出 JSON（调度环境），否则输出控制台格式
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json_format:
        renderer: list[Any] = [
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderer = [
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty(), sort_keys=False),
        ]

    structlog.configure(
        processors=shared + renderer,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """
    获取结构化日志记录器

    参数:
        name: 日志记录器名称，通常为 __name__

    示例:
        >>> logger = get_logger(__name__)
        >>> logger.info("sync_run_start", config_id="abc", source_view="projects_view")
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    绑定上下文字段到当前运行的所有日志

    示例:
        >>> bind_context(config_id="abc", target_collection="users")
        >>> logger.info("row_inserted")  # 自动包含 config_id 和 target_collection
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """清除上下文字段"""
    structlog.contextvars.clear_contextvars()

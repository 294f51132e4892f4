"""
集成同步引擎

定期从外部 MySQL 只读视图读取数据，按每个集成的字段映射转换，
再对账（新增或更新）到 projects / users / teams 实体集合，
并为每个集成保留最近 5 次执行记录。
"""

from typing import Any

__version__ = "0.1.0"

# 延迟导入，避免循环依赖
__all__ = [
    "SyncEngine",
    "IntegrationConfig",
    "ExecutionLog",
    "build_query",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """延迟加载核心类"""
    if name == "SyncEngine":
        from integration_sync.core.engine import SyncEngine
        return SyncEngine
    elif name == "IntegrationConfig":
        from integration_sync.models.integration import IntegrationConfig
        return IntegrationConfig
    elif name == "ExecutionLog":
        from integration_sync.models.execution import ExecutionLog
        return ExecutionLog
    elif name == "build_query":
        from integration_sync.utils.query_builder import build_query
        return build_query
    elif name == "load_config":
        from integration_sync.config import load_config
        return load_config
    raise AttributeError(f"module 'integration_sync' has no attribute '{name}'")

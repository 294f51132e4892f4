"""
测试配置和共享工具 (unittest 兼容)
"""

import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

from integration_sync.models.integration import (
    FieldMapping,
    IntegrationConfig,
    TargetCollection,
)
from integration_sync.sources.base import SourceReader


# ============================================================================
# 集成配置工厂函数
# ============================================================================

def make_integration_config(
    target_collection: str = "projects",
    mappings: Optional[List[Dict[str, Any]]] = None,
    **overrides: Any
) -> IntegrationConfig:
    """创建测试用集成配置，默认同步 projects"""
    defaults: Dict[str, Any] = {
        TargetCollection.PROJECTS.value: {
            "source_key_field": "project_number",
            "target_key_field": "projectId",
            "mappings": [
                {"source_field": "project_number", "target_field": "projectId",
                 "transformations": [{"type": "toString"}, {"type": "trim"}]},
                {"source_field": "customer", "target_field": "client"},
                {"source_field": "title", "target_field": "projectName"},
            ],
        },
        TargetCollection.USERS.value: {
            "source_key_field": "email",
            "target_key_field": "email",
            "mappings": [
                {"source_field": "email", "target_field": "email",
                 "transformations": [{"type": "trim"}, {"type": "lowercase"}]},
                {"source_field": "full_name", "target_field": "name",
                 "transformations": [{"type": "trim"}]},
            ],
        },
        TargetCollection.TEAMS.value: {
            "source_key_field": "team_name",
            "target_key_field": "name",
            "mappings": [
                {"source_field": "team_name", "target_field": "name"},
            ],
        },
    }[target_collection]

    data: Dict[str, Any] = {
        "id": f"{target_collection}-test",
        "name": f"{target_collection} 同步测试",
        "source_view": f"{target_collection}_view",
        "target_collection": target_collection,
        **defaults,
    }
    if mappings is not None:
        data["mappings"] = mappings
    data.update(overrides)
    return IntegrationConfig(**data)


def make_mapping(source: str, target: str, *transformations: Any, **kwargs: Any) -> FieldMapping:
    """创建字段映射，转换可以传类型名或完整字典"""
    chain = [t if isinstance(t, dict) else {"type": t} for t in transformations]
    return FieldMapping(source_field=source, target_field=target, transformations=chain, **kwargs)


# ============================================================================
# 数据源 Fake / Mock
# ============================================================================

class FakeSourceReader(SourceReader):
    """
    内存数据源

    按调用记录查询语句，总行数默认等于返回行数。
    """

    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        unfiltered_count: Optional[int] = None,
        error: Optional[Exception] = None
    ):
        super().__init__("fake_source")
        self.rows = rows or []
        self.unfiltered_count = unfiltered_count
        self.error = error
        self.queries: List[str] = []

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def fetch_rows(self, query: str) -> List[Dict[str, Any]]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.rows]

    async def count_rows(self, view: str) -> int:
        if self.unfiltered_count is None:
            return len(self.rows)
        return self.unfiltered_count


def create_mock_source_reader(rows: Optional[List[Dict[str, Any]]] = None) -> MagicMock:
    """创建 Mock SourceReader"""
    source = MagicMock()
    source.connect = AsyncMock()
    source.disconnect = AsyncMock()
    source.fetch_rows = AsyncMock(return_value=rows or [])
    source.count_rows = AsyncMock(return_value=len(rows or []))
    source.name = "mock_source"
    return source


# ============================================================================
# 测试数据工厂函数
# ============================================================================

def get_sample_project_rows() -> List[Dict[str, Any]]:
    """返回样本项目行"""
    return [
        {"project_number": 1001, "customer": "华北电力", "title": "变电站改造", "manager": "张三"},
        {"project_number": 1002, "customer": "东方航空", "title": "机票系统", "manager": "李四"},
        {"project_number": 1003, "customer": "南方电网", "title": "调度平台", "manager": "王五"},
    ]


def get_sample_user_rows() -> List[Dict[str, Any]]:
    """返回样本用户行"""
    return [
        {"email": "zhangsan@example.com", "full_name": " 张三 "},
        {"email": "lisi@example.com", "full_name": "李四"},
    ]


# ============================================================================
# 工具函数
# ============================================================================

def create_temp_db_path() -> Path:
    """创建临时文档库路径（目录由调用方清理）"""
    temp_dir = tempfile.mkdtemp()
    return Path(temp_dir) / "integration_sync.db"


def setup_logging():
    """设置测试日志级别"""
    from integration_sync.utils.logging import configure_logging
    configure_logging(log_level="DEBUG", json_format=False)

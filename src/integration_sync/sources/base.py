"""
外部数据源抽象基类
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List


class SourceReader(ABC):
    """
    只读数据源

    只执行 query_builder 构建的 SELECT 语句，不发出任何写操作。
    """

    def __init__(self, name: str = "source"):
        self.name = name

    @abstractmethod
    async def connect(self) -> None:
        """建立连接（失败抛出 SourceConnectionError）"""
        raise NotImplementedError

    @abstractmethod
    async def disconnect(self) -> None:
        """断开连接"""
        raise NotImplementedError

    @abstractmethod
    async def fetch_rows(self, query: str) -> List[Dict[str, Any]]:
        """
        执行查询并返回全部行

        参数:
            query: 已通过安全校验的 SELECT 语句

        返回:
            字典行列表，按查询顺序
        """
        raise NotImplementedError

    @abstractmethod
    async def count_rows(self, view: str) -> int:
        """返回视图不带过滤条件的总行数"""
        raise NotImplementedError


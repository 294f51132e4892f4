"""
存储抽象基类 - 目标实体集合与集成配置文档
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from integration_sync.models.integration import IntegrationConfig, TargetCollection

# 实体文档标识字段
ID_FIELD = "_id"

# 各目标集合的唯一字段
UNIQUE_FIELDS: Dict[TargetCollection, Tuple[str, ...]] = {
    TargetCollection.PROJECTS: ("projectId",),
    TargetCollection.USERS: ("email",),
    TargetCollection.TEAMS: ("name",),
}


class EntityStore(ABC):
    """
    目标实体集合存储

    实体为带 _id 的字典。唯一字段冲突时抛出 DuplicateKeyError。
    """

    def __init__(self, collection: TargetCollection):
        """
        初始化实体存储

        参数:
            collection: 目标集合
        """
        self.collection = collection
        self.unique_fields = UNIQUE_FIELDS.get(collection, ())

    @abstractmethod
    async def count(self) -> int:
        """返回集合中的实体数量"""
        raise NotImplementedError

    @abstractmethod
    async def find_one(self, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        查找第一个所有字段都相等的实体

        参数:
            criteria: 字段 -> 值

        返回:
            实体字典或 None
        """
        raise NotImplementedError

    @abstractmethod
    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        新增实体

        参数:
            document: 实体数据（不含 _id 时自动生成）

        返回:
            保存后的实体
        """
        raise NotImplementedError

    @abstractmethod
    async def update(self, entity_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        合并更新实体

        参数:
            entity_id: 实体 _id
            changes: 需要覆盖的字段

        返回:
            更新后的实体
        """
        raise NotImplementedError


class ConfigurationStore(ABC):
    """集成配置文档存储"""

    @abstractmethod
    async def get(self, config_id: str) -> Optional[IntegrationConfig]:
        """按 id 读取配置，不存在返回 None"""
        raise NotImplementedError

    @abstractmethod
    async def save(self, config: IntegrationConfig) -> IntegrationConfig:
        """新增或覆盖配置"""
        raise NotImplementedError

    @abstractmethod
    async def list(self, active_only: bool = False) -> List[IntegrationConfig]:
        """列出配置"""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, config_id: str) -> bool:
        """删除配置，返回是否存在"""
        raise NotImplementedError

"""
内存存储实现 - 用于测试和本地演练
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from integration_sync.core.errors import DuplicateKeyError, StoreError
from integration_sync.models.integration import IntegrationConfig, TargetCollection
from integration_sync.stores.base import ID_FIELD, ConfigurationStore, EntityStore


class InMemoryEntityStore(EntityStore):
    """按插入顺序保存实体的内存集合"""

    def __init__(
        self,
        collection: TargetCollection,
        documents: Optional[List[Dict[str, Any]]] = None
    ):
        super().__init__(collection)
        self._documents: Dict[str, Dict[str, Any]] = {}
        for document in documents or []:
            self._put(dict(document))

    async def count(self) -> int:
        return len(self._documents)

    async def find_one(self, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for document in self._documents.values():
            if all(document.get(k) == v for k, v in criteria.items()):
                return copy.deepcopy(document)
        return None

    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document = copy.deepcopy(document)
        document.setdefault(ID_FIELD, uuid.uuid4().hex)
        if document[ID_FIELD] in self._documents:
            raise DuplicateKeyError(f"{ID_FIELD} 已存在: {document[ID_FIELD]}")
        self._check_unique(document)
        return copy.deepcopy(self._put(document))

    async def update(self, entity_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        if entity_id not in self._documents:
            raise StoreError(f"实体不存在: {entity_id}")
        merged = {**self._documents[entity_id], **copy.deepcopy(changes)}
        merged[ID_FIELD] = entity_id
        self._check_unique(merged)
        return copy.deepcopy(self._put(merged))

    def all(self) -> List[Dict[str, Any]]:
        """返回全部实体副本"""
        return [copy.deepcopy(d) for d in self._documents.values()]

    def _put(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document.setdefault(ID_FIELD, uuid.uuid4().hex)
        self._documents[document[ID_FIELD]] = document
        return document

    def _check_unique(self, document: Dict[str, Any]) -> None:
        """唯一字段冲突检查"""
        for field in self.unique_fields:
            value = document.get(field)
            if value is None:
                continue
            for other in self._documents.values():
                if other[ID_FIELD] != document[ID_FIELD] and other.get(field) == value:
                    raise DuplicateKeyError(
                        f"唯一字段冲突: {self.collection.value}.{field} = {value!r}"
                    )


class InMemoryConfigurationStore(ConfigurationStore):
    """集成配置的内存存储，读写都返回副本"""

    def __init__(self, configs: Optional[List[IntegrationConfig]] = None):
        self._configs: Dict[str, IntegrationConfig] = {}
        for config in configs or []:
            self._configs[config.id] = config.model_copy(deep=True)

    async def get(self, config_id: str) -> Optional[IntegrationConfig]:
        config = self._configs.get(config_id)
        return config.model_copy(deep=True) if config else None

    async def save(self, config: IntegrationConfig) -> IntegrationConfig:
        config.updated_at = datetime.now(timezone.utc)
        self._configs[config.id] = config.model_copy(deep=True)
        return config

    async def list(self, active_only: bool = False) -> List[IntegrationConfig]:
        return [
            c.model_copy(deep=True) for c in self._configs.values()
            if c.active or not active_only
        ]

    async def delete(self, config_id: str) -> bool:
        return self._configs.pop(config_id, None) is not None

"""
对账器 - 单行的 匹配 -> 新增或更新 决策
"""

import json
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from integration_sync.core.collections import RunContext, get_policy, is_blank
from integration_sync.core.errors import RowValidationError, StoreError, SyncError
from integration_sync.models.integration import IntegrationConfig
from integration_sync.stores.base import ID_FIELD, EntityStore
from integration_sync.utils.logging import get_logger
from integration_sync.utils.mapper import RecordMapper

logger = get_logger(__name__)


class RowOutcome(str, Enum):
    """单行处理结果"""
    INSERTED = "inserted"
    UPDATED = "updated"


def _as_number(value: Any) -> Optional[Decimal]:
    """数字或数字字符串转 Decimal，布尔值不算数字"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
    elif isinstance(value, str) and value.strip():
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def keys_match(found: Any, searched: Any) -> bool:
    """
    校验存储返回的实体键是否真的等于查找值

    依次尝试: 严格相等（同类型）> 字符串相等 > 数值相等。
    顺序来自对线上数据的观察，用作防误匹配的启发式规则。
    """
    if type(found) is type(searched) and found == searched:
        return True
    if found is None or searched is None:
        return False
    if str(found) == str(searched):
        return True
    found_number = _as_number(found)
    searched_number = _as_number(searched)
    return (
        found_number is not None
        and searched_number is not None
        and found_number == searched_number
    )


def _snippet(data: Dict[str, Any], limit: int = 150) -> str:
    """行或载荷的简短 JSON 表示"""
    return json.dumps(data, default=str, ensure_ascii=False)[:limit]


class Reconciler:
    """
    单行对账

    处理顺序:
        1. 源键不能为空
        2. 目标键取载荷值，缺失时回退到源键
        3. 集合必填字段校验
        4. 集合补全（默认负责人、active、密码）
        5. 查找已有实体并校验是否误匹配
        6. 更新（跳过 keep 字段）或新增
    """

    def __init__(self, config: IntegrationConfig, store: EntityStore):
        """
        初始化对账器

        参数:
            config: 集成配置
            store: 目标集合存储
        """
        self.config = config
        self.store = store
        self.mapper = RecordMapper(config.mappings)
        self.policy = get_policy(config.target_collection)
        self._keep_fields = set(self.mapper.keep_fields) - set(self.policy.forced_fields)

    async def reconcile(self, row: Dict[str, Any], context: RunContext) -> RowOutcome:
        """
        处理一行

        参数:
            row: 源行
            context: 运行上下文

        返回:
            RowOutcome

        异常:
            RowValidationError / RequiredFieldError / DuplicateKeyError / StoreError
        """
        cfg = self.config
        payload = self.mapper.map(row)

        source_key = row.get(cfg.source_key_field)
        if is_blank(source_key):
            raise RowValidationError(
                f"源键字段 ({cfg.source_key_field}) 为空",
                detail=f"记录: {_snippet(row, 100)}",
            )

        target_key = payload.get(cfg.target_key_field)
        if is_blank(target_key):
            target_key = source_key
            payload[cfg.target_key_field] = target_key
        if is_blank(target_key):
            raise RowValidationError(
                f"目标键字段 ({cfg.target_key_field}) 在映射后为空",
                detail=f"源键: {source_key}, 载荷: {_snippet(payload, 100)}",
            )

        detail = f"键: {source_key}, 载荷: {_snippet(payload)}"
        self.policy.check_required(payload, detail=detail)

        supplied = {k for k, v in payload.items() if not is_blank(v)}
        try:
            self.policy.enrich(payload, context)
        except SyncError as e:
            e.detail = e.detail or detail
            raise

        existing = await self._find_existing(target_key, context)

        if existing is not None:
            changes = self.policy.prepare_update(payload, existing, supplied)
            changes = {k: v for k, v in changes.items() if k not in self._keep_fields}
            await self._write(self.store.update, existing[ID_FIELD], changes)
            logger.debug("row_updated", key=target_key, entity_id=existing[ID_FIELD])
            return RowOutcome.UPDATED

        document = self.policy.prepare_insert(payload, context)
        await self._write(self.store.insert, document)
        logger.debug("row_inserted", key=target_key)
        return RowOutcome.INSERTED

    async def _find_existing(self, target_key: Any, context: RunContext) -> Optional[Dict[str, Any]]:
        """查找已有实体，运行开始时集合为空则直接视为新记录"""
        if context.collection_was_empty:
            return None

        search_value = target_key.strip() if isinstance(target_key, str) else target_key
        field = self.config.target_key_field
        try:
            existing = await self.store.find_one({field: search_value})
        except SyncError:
            raise
        except Exception as e:
            raise StoreError(f"查找已有实体失败: {e}") from e

        if existing is None:
            return None

        found_value = existing.get(field)
        if not keys_match(found_value, search_value):
            logger.warning(
                "match_false_positive",
                field=field,
                searched=search_value,
                searched_type=type(search_value).__name__,
                found=found_value,
                found_type=type(found_value).__name__,
            )
            return None
        return existing

    async def _write(self, operation: Any, *args: Any) -> Dict[str, Any]:
        """执行存储写入，非同步错误统一包装为 StoreError"""
        try:
            return await operation(*args)
        except SyncError:
            raise
        except Exception as e:
            raise StoreError(f"写入 {self.config.target_collection.value} 失败: {e}") from e

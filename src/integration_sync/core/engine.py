"""
同步引擎 - 单次集成运行的协调器
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from integration_sync.core.collections import RunContext
from integration_sync.core.error_classifier import ErrorClassifier
from integration_sync.core.errors import (
    ConfigurationNotFoundError,
    ExecutionInProgressError,
    SourceQueryError,
    SyncError,
)
from integration_sync.core.execution_logger import ExecutionLogger
from integration_sync.core.reconciler import Reconciler, RowOutcome
from integration_sync.models.app_config import SyncSettings
from integration_sync.models.execution import ExecutionResult
from integration_sync.models.integration import IntegrationConfig, TargetCollection
from integration_sync.sources.base import SourceReader
from integration_sync.stores.base import ID_FIELD, ConfigurationStore, EntityStore
from integration_sync.utils.logging import bind_context, clear_context, get_logger
from integration_sync.utils.query_builder import build_query

logger = get_logger(__name__)


class SyncEngine:
    """
    同步引擎

    execute() 的完整流程:
        - 读取集成配置
        - 解析默认项目负责人（仅 projects）
        - 构建并校验源查询，读取全部源行
        - 统计目标集合数量，集合为空则本次运行不做匹配查询
        - 逐行对账，行级失败计数并归类后继续
        - 写入执行历史并返回汇总

    同一配置的两次运行不能并发：本实例内会直接拒绝，
    跨进程的互斥由调度方负责。
    """

    def __init__(
        self,
        config_store: ConfigurationStore,
        source: SourceReader,
        entity_stores: Dict[TargetCollection, EntityStore],
        settings: Optional[SyncSettings] = None,
    ):
        """
        初始化同步引擎

        参数:
            config_store: 集成配置存储
            source: 外部只读数据源
            entity_stores: 目标集合 -> 实体存储
            settings: 同步行为参数
        """
        self.config_store = config_store
        self.source = source
        self.entity_stores = entity_stores
        self.settings = settings or SyncSettings()
        self.execution_logger = ExecutionLogger(config_store)
        self._running: Set[str] = set()

    def is_running(self, config_id: str) -> bool:
        """检查配置是否正在运行"""
        return config_id in self._running

    async def execute(
        self,
        config_id: str,
        invoking_user_id: Optional[str] = None
    ) -> ExecutionResult:
        """
        执行一次同步

        参数:
            config_id: 集成配置 id
            invoking_user_id: 触发运行的用户 id（作为默认负责人的后备）

        返回:
            ExecutionResult: status / inserted / updated / failed / total

        异常:
            ConfigurationNotFoundError: 配置不存在
            ExecutionInProgressError: 同一配置已在运行
            UnsafeFilterError: 过滤条件被拒绝
            SourceConnectionError / SourceQueryError: 源库不可用或查询失败
        """
        config = await self.config_store.get(config_id)
        if config is None:
            raise ConfigurationNotFoundError(f"集成配置不存在: {config_id}")

        if config_id in self._running:
            raise ExecutionInProgressError(f"集成配置正在运行: {config_id}")

        self._running.add(config_id)
        bind_context(
            config_id=config.id,
            config_name=config.name,
            target_collection=config.target_collection.value
        )
        try:
            return await self._run(config, invoking_user_id)
        finally:
            self._running.discard(config_id)
            clear_context()

    async def _run(self, config: IntegrationConfig, invoking_user_id: Optional[str]) -> ExecutionResult:
        """执行一次运行，运行级失败写入错误记录后重新抛出"""
        started_at = datetime.now(timezone.utc)
        classifier = ErrorClassifier()
        inserted = updated = failed = 0
        rows: List[Dict[str, Any]] = []

        logger.info(
            "sync_run_start",
            source_view=config.source_view,
            filter=config.filter_clause
        )

        try:
            store = self._get_store(config.target_collection)
            query = build_query(config.source_view, config.filter_clause)
            logger.info("sync_query", query=query)

            default_owner = None
            if config.target_collection == TargetCollection.PROJECTS:
                default_owner = await self._resolve_default_owner(invoking_user_id)

            unfiltered_total = await self._count_unfiltered(config)
            try:
                rows = await self.source.fetch_rows(query)
            except SyncError:
                raise
            except Exception as e:
                raise SourceQueryError(f"源查询执行失败: {e}", query=query) from e

            logger.info("sync_rows_fetched", total=len(rows))
            note = self._check_filter_effect(config, len(rows), unfiltered_total)

            initial_count = await store.count()
            if initial_count == 0:
                logger.info("target_collection_empty", detail="所有记录都将新增")
            context = RunContext(
                collection_was_empty=initial_count == 0,
                default_owner=default_owner,
                default_password=self.settings.default_password,
            )

            reconciler = Reconciler(config, store)
            for index, row in enumerate(rows, start=1):
                try:
                    outcome = await reconciler.reconcile(row, context)
                except Exception as e:
                    failed += 1
                    error_type, message = classifier.record(e, self._example(config, index, row, e))
                    logger.debug(
                        "row_failed",
                        row=index,
                        error_type=error_type.value,
                        error=message
                    )
                    continue

                if outcome == RowOutcome.INSERTED:
                    inserted += 1
                else:
                    updated += 1

            final_count = await store.count()
            self.execution_logger.check_consistency(initial_count, final_count, inserted, updated)

            log = self.execution_logger.build_log(
                started_at=started_at,
                inserted=inserted,
                updated=updated,
                failed=failed,
                total_records=len(rows),
                classifier=classifier,
                note=note,
            )
        except Exception as e:
            logger.error("sync_run_failed", error=str(e), error_class=type(e).__name__)
            log = self.execution_logger.build_failure_log(
                started_at, e, config,
                inserted=inserted,
                updated=updated,
                failed=failed,
                total_records=len(rows),
            )
            await self.execution_logger.record(config, log)
            raise

        await self.execution_logger.record(config, log)

        for bucket in log.errors:
            logger.info(
                "sync_error_bucket",
                error_type=bucket.type.value,
                message=bucket.message,
                count=bucket.count
            )
        logger.info(
            "sync_run_complete",
            status=log.status.value,
            inserted=inserted,
            updated=updated,
            failed=failed,
            total=len(rows),
            duration=round(log.duration_seconds, 2)
        )

        return ExecutionResult(
            status=log.status,
            inserted=inserted,
            updated=updated,
            failed=failed,
            total=len(rows),
        )

    def _get_store(self, collection: TargetCollection) -> EntityStore:
        """获取目标集合存储"""
        store = self.entity_stores.get(collection)
        if store is None:
            raise ValueError(f"不支持的目标集合: {collection.value}")
        return store

    async def _resolve_default_owner(self, invoking_user_id: Optional[str]) -> Optional[Any]:
        """
        解析默认项目负责人

        优先使用第一个启用的管理员，其次是触发运行的用户，都没有时返回 None。
        """
        users = self.entity_stores.get(TargetCollection.USERS)
        if users is not None:
            try:
                admin = await users.find_one(
                    {"profile": self.settings.admin_profile, "active": True}
                )
            except Exception as e:
                logger.error("admin_lookup_failed", error=str(e))
                admin = None
            if admin is not None:
                logger.info("default_owner_admin", user_id=admin[ID_FIELD], email=admin.get("email"))
                return admin[ID_FIELD]

        if invoking_user_id:
            logger.info("default_owner_invoking_user", user_id=invoking_user_id)
            return invoking_user_id

        logger.warning("default_owner_unresolved", detail="缺少 createdBy 的项目将写入失败")
        return None

    async def _count_unfiltered(self, config: IntegrationConfig) -> Optional[int]:
        """有过滤条件时统计视图总行数，失败只记录警告"""
        if not config.filter_clause:
            return None
        try:
            return await self.source.count_rows(config.source_view)
        except Exception as e:
            logger.warning("unfiltered_count_failed", error=str(e))
            return None

    def _check_filter_effect(
        self,
        config: IntegrationConfig,
        filtered_total: int,
        unfiltered_total: Optional[int]
    ) -> Optional[str]:
        """过滤后行数与总行数相同时，提示过滤条件可能未生效"""
        if not unfiltered_total or filtered_total != unfiltered_total:
            return None

        logger.warning(
            "filter_not_effective",
            filter=config.filter_clause,
            total=filtered_total
        )
        return (
            f"过滤条件可能未生效: 返回 {filtered_total} 条记录（与不加过滤相同）。"
            "请检查语法，日期请使用带引号的 'YYYY-MM-DD'"
        )

    @staticmethod
    def _example(config: IntegrationConfig, index: int, row: Dict[str, Any], error: Exception) -> str:
        """失败样例描述"""
        detail = getattr(error, "detail", None)
        if detail:
            return f"第 {index} 行, {detail}"
        key = row.get(config.source_key_field) if row else None
        return f"第 {index} 行, 键: {key if key is not None else 'N/A'}, 错误: {error}"

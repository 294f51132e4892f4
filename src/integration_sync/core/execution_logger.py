"""
执行记录器 - 汇总单次运行并写入配置的执行历史
"""

from datetime import datetime, timezone
from typing import List, Optional

from integration_sync.core.error_classifier import ErrorClassifier, truncate_message
from integration_sync.core.errors import SourceQueryError, SyncError
from integration_sync.models.execution import (
    ErrorBucket,
    ErrorType,
    ExecutionLog,
    ExecutionStatus,
)
from integration_sync.models.integration import IntegrationConfig
from integration_sync.stores.base import ConfigurationStore
from integration_sync.utils.logging import get_logger

logger = get_logger(__name__)


def determine_status(inserted: int, updated: int, failed: int) -> ExecutionStatus:
    """
    运行状态

    - 无失败: success
    - 有失败且有写入: partial
    - 其余: error
    """
    if failed == 0:
        return ExecutionStatus.SUCCESS
    if inserted > 0 or updated > 0:
        return ExecutionStatus.PARTIAL
    return ExecutionStatus.ERROR


def build_message(
    status: ExecutionStatus,
    inserted: int,
    updated: int,
    failed: int,
    errors: List[ErrorBucket],
    note: Optional[str] = None,
) -> str:
    """生成可读的运行摘要"""
    if failed > 0:
        if len(errors) == 1:
            return f"{errors[0].message} ({errors[0].count} 次)"
        return f"发现 {len(errors)} 类错误（共 {failed} 条失败）"
    if note:
        return note
    if status == ExecutionStatus.PARTIAL:
        return f"同步部分完成: 新增 {inserted}，更新 {updated}，失败 {failed}"
    return f"同步成功: 新增 {inserted}，更新 {updated}"


class ExecutionLogger:
    """
    执行记录器

    每次运行生成一条 ExecutionLog，插入配置历史最前，只保留最近 5 条。
    """

    def __init__(self, config_store: ConfigurationStore):
        """
        初始化记录器

        参数:
            config_store: 集成配置存储
        """
        self.config_store = config_store

    def build_log(
        self,
        started_at: datetime,
        inserted: int,
        updated: int,
        failed: int,
        total_records: int,
        classifier: ErrorClassifier,
        note: Optional[str] = None,
        finished_at: Optional[datetime] = None,
    ) -> ExecutionLog:
        """
        生成运行结束时的执行记录

        参数:
            started_at: 开始时间
            inserted/updated/failed: 计数
            total_records: 处理的源记录数
            classifier: 本次运行的错误分组
            note: 无失败时附加的诊断信息（如过滤条件未生效）
        """
        status = determine_status(inserted, updated, failed)
        errors = classifier.buckets()
        return ExecutionLog(
            status=status,
            started_at=started_at,
            finished_at=finished_at or datetime.now(timezone.utc),
            inserted=inserted,
            updated=updated,
            failed=failed,
            total_records=total_records,
            message=build_message(status, inserted, updated, failed, errors, note),
            errors=errors,
        )

    def build_failure_log(
        self,
        started_at: datetime,
        error: BaseException,
        config: IntegrationConfig,
        inserted: int = 0,
        updated: int = 0,
        failed: int = 0,
        total_records: int = 0,
    ) -> ExecutionLog:
        """
        生成运行级失败的执行记录

        只有一个 system 分组；源查询失败时样例包含查询语句和过滤条件。
        """
        message = error.message if isinstance(error, SyncError) else (str(error) or type(error).__name__)
        if isinstance(error, SourceQueryError):
            examples = [
                f"Query: {error.query}",
                f"过滤条件: {config.filter_clause or '无'}",
            ]
            if error.detail:
                examples.append(error.detail)
        elif isinstance(error, SyncError) and error.detail:
            examples = [error.detail]
        else:
            examples = [f"{type(error).__name__}: {message}"]

        message = truncate_message(message)
        return ExecutionLog(
            status=ExecutionStatus.ERROR,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            inserted=inserted,
            updated=updated,
            failed=max(failed, 1),
            total_records=total_records,
            message=message,
            errors=[ErrorBucket(
                type=ErrorType.SYSTEM,
                message=message,
                count=1,
                examples=examples[:3],
            )],
        )

    async def record(self, config: IntegrationConfig, log: ExecutionLog) -> IntegrationConfig:
        """
        把执行记录写入配置历史

        重新读取配置以保留并发编辑，读取不到时使用内存中的配置。
        """
        fresh = await self.config_store.get(config.id)
        target = fresh or config
        target.append_history(log)
        await self.config_store.save(target)

        logger.info(
            "execution_logged",
            config_id=target.id,
            status=log.status.value,
            history=len(target.history)
        )
        return target

    def check_consistency(
        self,
        initial_count: int,
        final_count: int,
        inserted: int,
        updated: int,
    ) -> bool:
        """
        检查运行前后集合数量与计数是否一致

        返回:
            是否一致
        """
        consistent = True
        if initial_count == 0 and updated > 0:
            logger.error(
                "updates_on_empty_collection",
                updated=updated,
                inserted=inserted
            )
            consistent = False

        expected = initial_count + inserted
        if final_count != expected:
            logger.warning(
                "count_inconsistency",
                initial_count=initial_count,
                final_count=final_count,
                expected_count=expected,
                inserted=inserted,
                hint="部分写入可能静默失败"
            )
            consistent = False
        return consistent

"""
同步错误类型

行级错误（键缺失、必填缺失、唯一键冲突、存储异常）不会中断运行，
由 ErrorClassifier 按 error_type 归类；运行级错误（过滤条件不安全、
源库连接或查询失败）会中断运行并抛给调用方。
"""

from typing import Optional

from integration_sync.models.execution import ErrorType


class SyncError(Exception):
    """同步错误基类"""

    error_type: ErrorType = ErrorType.PROCESSING

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ConfigurationNotFoundError(SyncError):
    """集成配置不存在"""
    error_type = ErrorType.SYSTEM


class ExecutionInProgressError(SyncError):
    """同一配置已有运行在进行中"""
    error_type = ErrorType.SYSTEM


class UnsafeFilterError(SyncError):
    """过滤条件或视图名被安全校验拒绝"""
    error_type = ErrorType.VALIDATION


class SourceConnectionError(SyncError):
    """无法连接外部数据源"""
    error_type = ErrorType.SYSTEM


class SourceQueryError(SyncError):
    """源查询执行失败"""
    error_type = ErrorType.SYSTEM

    def __init__(self, message: str, query: str, detail: Optional[str] = None):
        super().__init__(message, detail)
        self.query = query


class RowValidationError(SyncError):
    """源键或目标键为空"""
    error_type = ErrorType.VALIDATION


class RequiredFieldError(SyncError):
    """目标集合的必填字段缺失"""
    error_type = ErrorType.REQUIRED


class DuplicateKeyError(SyncError):
    """写入时唯一键冲突"""
    error_type = ErrorType.DUPLICATE


class StoreError(SyncError):
    """存储层异常"""
    error_type = ErrorType.SYSTEM

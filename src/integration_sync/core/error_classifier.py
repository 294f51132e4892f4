"""
错误分类器 - 把行级失败归入固定的错误分类并按消息去重
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from integration_sync.core.errors import SyncError
from integration_sync.models.execution import (
    MAX_EXAMPLE_LENGTH,
    MAX_EXAMPLES,
    ErrorBucket,
    ErrorType,
)

# 分组键（消息）最大长度
MAX_MESSAGE_LENGTH = 150

# 消息中出现即视为必填缺失
_REQUIRED_MARKERS = ("required", "obrigatório", "必填")

# 视为基础设施故障的异常
_SYSTEM_ERRORS = (ConnectionError, TimeoutError, OSError)


def truncate_message(message: str) -> str:
    """截断到 MAX_MESSAGE_LENGTH 以内"""
    if len(message) <= MAX_MESSAGE_LENGTH:
        return message
    return message[:MAX_MESSAGE_LENGTH - 3] + "..."


def describe_error(error: BaseException) -> str:
    """错误的可读消息"""
    if isinstance(error, SyncError):
        return error.message
    if isinstance(error, ValidationError):
        fields = ", ".join(
            f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()
        )
        return f"数据校验失败: {fields}"
    return str(error) or type(error).__name__


def classify(error: BaseException, message: Optional[str] = None) -> ErrorType:
    """
    判断错误分类

    顺序: SyncError 自带分类 > pydantic 校验错误 > 消息含 required >
    基础设施异常 > processing
    """
    if isinstance(error, SyncError):
        return error.error_type
    if isinstance(error, ValidationError):
        return ErrorType.VALIDATION

    text = (message or describe_error(error)).lower()
    if any(marker in text for marker in _REQUIRED_MARKERS):
        return ErrorType.REQUIRED
    if isinstance(error, _SYSTEM_ERRORS):
        return ErrorType.SYSTEM
    return ErrorType.PROCESSING


@dataclass
class _Bucket:
    type: ErrorType
    message: str
    count: int = 0
    examples: List[str] = field(default_factory=list)


class ErrorClassifier:
    """
    单次运行的错误聚合

    相同（截断后）消息合并为一个分组，每组最多保留 3 条样例，
    内存占用与输入规模无关。
    """

    def __init__(self) -> None:
        self._buckets: Dict[str, _Bucket] = {}

    def record(self, error: BaseException, example: Optional[str] = None) -> Tuple[ErrorType, str]:
        """
        记录一次失败

        参数:
            error: 异常
            example: 样例描述（可选）

        返回:
            (错误分类, 分组消息)
        """
        message = describe_error(error)
        return self.add(classify(error, message), message, example)

    def add(
        self,
        error_type: ErrorType,
        message: str,
        example: Optional[str] = None
    ) -> Tuple[ErrorType, str]:
        """按已知分类记录一次失败"""
        key = truncate_message(message)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(type=error_type, message=key)
            self._buckets[key] = bucket

        bucket.count += 1
        if example and len(bucket.examples) < MAX_EXAMPLES:
            bucket.examples.append(example[:MAX_EXAMPLE_LENGTH])
        return bucket.type, key

    def buckets(self) -> List[ErrorBucket]:
        """按首次出现顺序返回错误分组"""
        return [
            ErrorBucket(type=b.type, message=b.message, count=b.count, examples=list(b.examples))
            for b in self._buckets.values()
        ]

    @property
    def total(self) -> int:
        """记录的失败总数"""
        return sum(b.count for b in self._buckets.values())

    def __len__(self) -> int:
        return len(self._buckets)

"""
执行记录模型 - 单次同步运行的结果
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# 每个错误分组保留的样例数
MAX_EXAMPLES = 3
# 单条样例最大长度
MAX_EXAMPLE_LENGTH = 200


class ExecutionStatus(str, Enum):
    """运行状态"""
    SUCCESS = "success"   # 无失败
    PARTIAL = "partial"   # 有失败，也有写入
    ERROR = "error"       # 有失败且无写入，或运行级失败


class ErrorType(str, Enum):
    """错误分类"""
    VALIDATION = "validation"   # 键缺失或格式错误
    DUPLICATE = "duplicate"     # 唯一键冲突
    REQUIRED = "required"       # 必填字段缺失
    PROCESSING = "processing"   # 未归类的行级错误
    SYSTEM = "system"           # 源查询/连接/存储异常


class ErrorBucket(BaseModel):
    """
    错误分组

    相同 message 的错误合并计数，只保留少量样例。

    属性:
        type: 错误分类
        message: 错误消息（已截断）
        count: 出现次数
        examples: 样例描述，最多 3 条
    """
    model_config = ConfigDict(frozen=True)

    type: ErrorType = Field(..., description="错误分类")
    message: str = Field(..., min_length=1, description="错误消息")
    count: int = Field(default=1, ge=1, description="出现次数")
    examples: List[str] = Field(
        default_factory=list, max_length=MAX_EXAMPLES, description="样例"
    )

    @field_validator("examples")
    @classmethod
    def truncate_examples(cls, v: List[str]) -> List[str]:
        """截断过长样例"""
        return [e[:MAX_EXAMPLE_LENGTH] for e in v]


class ExecutionLog(BaseModel):
    """
    执行记录（创建后不可变）

    属性:
        status: 运行状态
        started_at: 开始时间
        finished_at: 结束时间
        inserted: 新增数
        updated: 更新数
        failed: 失败数
        total_records: 处理的源记录数
        message: 可读的摘要信息
        errors: 错误分组
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: ExecutionStatus = Field(..., description="运行状态")
    started_at: datetime = Field(..., alias="startedAt", description="开始时间")
    finished_at: datetime = Field(..., alias="finishedAt", description="结束时间")
    inserted: int = Field(default=0, ge=0, description="新增数")
    updated: int = Field(default=0, ge=0, description="更新数")
    failed: int = Field(default=0, ge=0, description="失败数")
    total_records: int = Field(default=0, ge=0, alias="totalRecords", description="源记录数")
    message: Optional[str] = Field(default=None, description="摘要信息")
    errors: List[ErrorBucket] = Field(default_factory=list, description="错误分组")

    @model_validator(mode="after")
    def validate_time_order(self) -> "ExecutionLog":
        """验证时间顺序"""
        if self.finished_at < self.started_at:
            raise ValueError("finished_at 不能早于 started_at")
        return self

    @property
    def duration_seconds(self) -> float:
        """运行耗时（秒）"""
        return (self.finished_at - self.started_at).total_seconds()


class ExecutionResult(BaseModel):
    """execute() 返回给调用方的运行汇总"""
    status: ExecutionStatus
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    total: int = 0

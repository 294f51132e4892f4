"""
集成配置模型 - 使用 Pydantic 描述一个 视图 -> 集合 的同步任务
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from integration_sync.models.execution import ExecutionLog

# 每个配置保留的执行历史条数
MAX_HISTORY = 5


class TargetCollection(str, Enum):
    """目标实体集合"""
    PROJECTS = "projects"
    USERS = "users"
    TEAMS = "teams"


class TransformationType(str, Enum):
    """字段转换类型"""
    TRIM = "trim"                     # 去除首尾空白
    LOWERCASE = "lowercase"           # 转为小写
    UPPERCASE = "uppercase"           # 转为大写
    TO_NUMBER = "toNumber"            # 转为数字
    TO_STRING = "toString"            # 转为字符串
    TO_DATE = "toDate"                # 转为日期
    MAP_VALUE = "mapValue"            # 值映射表
    DEFAULT_VALUE = "defaultValue"    # 默认值


class UpdateBehavior(str, Enum):
    """匹配到已有实体时字段的更新行为"""
    UPDATE = "update"   # 覆盖
    KEEP = "keep"       # 保留已有值


class ScheduleMode(str, Enum):
    """调度模式"""
    NONE = "none"
    CRON = "cron"
    PRESET = "preset"


class _AliasedModel(BaseModel):
    """接受原始文档中的 camelCase 字段名"""
    model_config = ConfigDict(populate_by_name=True)


class ValueMapEntry(_AliasedModel):
    """mapValue 转换的一条 from -> to 映射"""
    from_value: Any = Field(default=None, alias="from", description="源值")
    to_value: Any = Field(default=None, alias="to", description="目标值")


class TransformationOptions(_AliasedModel):
    """
    转换参数

    属性:
        map: mapValue 使用的映射表（按顺序匹配）
        default_value: defaultValue 使用的默认值
        date_format: toDate 使用的 strptime 格式（可选）
    """
    map: List[ValueMapEntry] = Field(default_factory=list, description="值映射表")
    default_value: Any = Field(default=None, alias="defaultValue", description="默认值")
    date_format: Optional[str] = Field(default=None, alias="dateFormat", description="日期格式")


class Transformation(_AliasedModel):
    """单个字段转换 {type, options}"""
    type: TransformationType = Field(..., description="转换类型")
    options: TransformationOptions = Field(
        default_factory=TransformationOptions, description="转换参数"
    )

    @model_validator(mode="after")
    def validate_options(self) -> "Transformation":
        """验证转换参数"""
        if self.type == TransformationType.MAP_VALUE and not self.options.map:
            raise ValueError("mapValue 转换必须提供 map 映射表")
        if (
            self.type == TransformationType.DEFAULT_VALUE
            and "default_value" not in self.options.model_fields_set
        ):
            raise ValueError("defaultValue 转换必须提供 default_value 参数")
        return self


class FieldMapping(_AliasedModel):
    """
    字段映射

    属性:
        source_field: 源视图字段名
        target_field: 目标实体字段名
        transformations: 按顺序执行的转换链
        update_behavior: 匹配到已有实体时的更新行为
    """
    source_field: str = Field(..., min_length=1, alias="sourceField", description="源字段名")
    target_field: str = Field(..., min_length=1, alias="targetField", description="目标字段名")
    transformations: List[Transformation] = Field(default_factory=list, description="转换链")
    update_behavior: UpdateBehavior = Field(
        default=UpdateBehavior.UPDATE, alias="updateBehavior", description="更新行为"
    )

    @field_validator("source_field", "target_field")
    @classmethod
    def strip_field_name(cls, v: str) -> str:
        """去除字段名首尾空白"""
        v = v.strip()
        if not v:
            raise ValueError("字段名不能为空")
        return v


class SchedulePreset(_AliasedModel):
    """
    预设调度

    属性:
        type: daily / weekly / interval
        interval_minutes: interval 模式的分钟间隔
        day_of_week: weekly 模式的星期（0=周日）
        time_of_day: daily/weekly 模式的执行时间 HH:mm
    """
    type: Literal["daily", "weekly", "interval"] = Field(..., description="预设类型")
    interval_minutes: Optional[int] = Field(default=None, alias="intervalMinutes")
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6, alias="dayOfWeek")
    time_of_day: Optional[str] = Field(default=None, alias="timeOfDay")

    @field_validator("time_of_day")
    @classmethod
    def validate_time_of_day(cls, v: Optional[str]) -> Optional[str]:
        """验证 HH:mm 格式"""
        if v is None:
            return v
        match = re.fullmatch(r"(\d{1,2}):(\d{2})", v.strip())
        if not match or int(match.group(1)) > 23 or int(match.group(2)) > 59:
            raise ValueError(f"time_of_day 必须是 HH:mm 格式: {v}")
        return v.strip()


class ScheduleConfig(_AliasedModel):
    """
    调度配置（仅数据，执行器不在本引擎内）
    """
    mode: ScheduleMode = Field(default=ScheduleMode.NONE, description="调度模式")
    cron_expression: Optional[str] = Field(default=None, alias="cronExpression")
    preset: Optional[SchedulePreset] = Field(default=None)

    @model_validator(mode="after")
    def validate_mode(self) -> "ScheduleConfig":
        """验证模式与参数匹配"""
        if self.mode == ScheduleMode.CRON:
            if not self.cron_expression or len(self.cron_expression.split()) != 5:
                raise ValueError("cron 模式必须提供 5 段 cron 表达式")
        if self.mode == ScheduleMode.PRESET and self.preset is None:
            raise ValueError("preset 模式必须提供 preset 配置")
        return self

    def to_cron_expression(self) -> Optional[str]:
        """
        生成有效的 cron 表达式

        返回:
            cron 表达式，mode 为 none 时返回 None

        示例:
            >>> ScheduleConfig(mode="preset", preset={"type": "daily", "time_of_day": "06:30"}).to_cron_expression()
            '30 6 * * *'
        """
        if self.mode == ScheduleMode.CRON:
            return self.cron_expression
        if self.mode != ScheduleMode.PRESET or self.preset is None:
            return None

        preset = self.preset
        if preset.type == "interval":
            interval = max(1, min(preset.interval_minutes or 15, 60))
            return f"*/{interval} * * * *"

        hour, minute = (preset.time_of_day or "00:00").split(":")
        if preset.type == "weekly":
            day = preset.day_of_week if preset.day_of_week is not None else 0
            return f"{int(minute)} {int(hour)} * * {day}"
        return f"{int(minute)} {int(hour)} * * *"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationConfig(_AliasedModel):
    """
    集成配置 - 一个同步任务的完整定义

    属性:
        id: 配置标识
        name: 显示名称
        active: 是否启用
        source_view: 源只读视图名
        filter_clause: 附加到 WHERE 的过滤表达式（不可信输入）
        source_key_field: 源行匹配字段
        target_key_field: 目标实体匹配字段
        target_collection: 目标集合
        mappings: 字段映射列表
        schedule: 调度配置
        history: 执行历史，最新在前，最多 5 条
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="配置标识")
    name: str = Field(..., min_length=1, description="显示名称")
    description: Optional[str] = Field(default=None, description="描述")
    active: bool = Field(default=True, description="是否启用")
    source_view: str = Field(..., min_length=1, alias="sourceView", description="源视图名")
    filter_clause: Optional[str] = Field(default=None, alias="filterClause", description="过滤条件")
    source_key_field: str = Field(..., min_length=1, alias="sourceKeyField")
    target_key_field: str = Field(..., min_length=1, alias="targetKeyField")
    target_collection: TargetCollection = Field(..., alias="targetCollection")
    target_api: Optional[str] = Field(default=None, alias="targetApi", description="目标 API 标签")
    mappings: List[FieldMapping] = Field(default_factory=list, description="字段映射")
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig, description="调度配置")
    history: List[ExecutionLog] = Field(
        default_factory=list, max_length=MAX_HISTORY, description="执行历史"
    )
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=_utcnow, alias="updatedAt")

    @field_validator("name", "source_view", "source_key_field", "target_key_field")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """去除首尾空白"""
        v = v.strip()
        if not v:
            raise ValueError("不能为空")
        return v

    @field_validator("filter_clause")
    @classmethod
    def normalize_filter(cls, v: Optional[str]) -> Optional[str]:
        """空过滤条件视为未设置"""
        if v is None:
            return None
        v = v.strip()
        return v or None

    def append_history(self, entry: ExecutionLog) -> None:
        """
        追加一条执行记录

        新记录插入到最前，超出 MAX_HISTORY 的旧记录直接丢弃。
        """
        self.history = [entry, *self.history][:MAX_HISTORY]

    def summary(self) -> Dict[str, Any]:
        """用于日志和 CLI 输出的简要信息"""
        last = self.history[0] if self.history else None
        return {
            "id": self.id,
            "name": self.name,
            "active": self.active,
            "source_view": self.source_view,
            "target_collection": self.target_collection.value,
            "last_status": last.status.value if last else None,
        }

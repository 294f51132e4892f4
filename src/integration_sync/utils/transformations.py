"""
字段转换库 - 每个转换都是 (value, options) -> value 的纯函数
"""

import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Optional

from integration_sync.models.integration import (
    Transformation,
    TransformationOptions,
    TransformationType,
)

# 转换函数类型
TransformationFunc = Callable[[Any, TransformationOptions], Any]


def _trim(value: Any, options: TransformationOptions) -> Any:
    """去除首尾空白，非字符串原样返回"""
    return value.strip() if isinstance(value, str) else value


def _lowercase(value: Any, options: TransformationOptions) -> Any:
    """转为小写"""
    return value.lower() if isinstance(value, str) else value


def _uppercase(value: Any, options: TransformationOptions) -> Any:
    """转为大写"""
    return value.upper() if isinstance(value, str) else value


def _to_number(value: Any, options: TransformationOptions) -> Any:
    """
    转为数字

    无法转换时返回 None（不抛错，由必填校验兜底）。
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, str):
        text = value.strip()
        # int() 和 Decimal() 都接受下划线分隔
        if not text or "_" in text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
        if not number.is_finite():
            return None
        return int(number) if number == number.to_integral_value() else float(number)
    return None


def _to_string(value: Any, options: TransformationOptions) -> Any:
    """转为字符串，None 转为空字符串"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _to_date(value: Any, options: TransformationOptions) -> Any:
    """
    转为 datetime

    支持 datetime/date、ISO 8601 字符串、epoch 毫秒，
    指定 date_format 时按该格式解析字符串。无法解析返回 None。
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        try:
            if options.date_format:
                return datetime.strptime(text, options.date_format)
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def _same_value(a: Any, b: Any) -> bool:
    """相等比较，布尔值只与布尔值相等"""
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _map_value(value: Any, options: TransformationOptions) -> Any:
    """按映射表替换，未命中原样返回"""
    for entry in options.map:
        if _same_value(entry.from_value, value):
            return entry.to_value
    return value


def _default_value(value: Any, options: TransformationOptions) -> Any:
    """值为 None 或空字符串时使用默认值"""
    if value is None or value == "":
        return options.default_value
    return value


# 转换注册表
TRANSFORMATION_REGISTRY: Dict[TransformationType, TransformationFunc] = {
    TransformationType.TRIM: _trim,
    TransformationType.LOWERCASE: _lowercase,
    TransformationType.UPPERCASE: _uppercase,
    TransformationType.TO_NUMBER: _to_number,
    TransformationType.TO_STRING: _to_string,
    TransformationType.TO_DATE: _to_date,
    TransformationType.MAP_VALUE: _map_value,
    TransformationType.DEFAULT_VALUE: _default_value,
}


def apply_transformation(value: Any, transformation: Transformation) -> Any:
    """
    执行单个转换

    参数:
        value: 原始值
        transformation: 转换定义

    返回:
        转换后的值

    示例:
        >>> apply_transformation("  Ana  ", Transformation(type="trim"))
        'Ana'
        >>> apply_transformation("abc", Transformation(type="toNumber")) is None
        True
    """
    if transformation.type not in TRANSFORMATION_REGISTRY:
        raise ValueError(f"未知的转换类型: {transformation.type}")

    func = TRANSFORMATION_REGISTRY[transformation.type]
    return func(value, transformation.options)


def apply_transformations(value: Any, transformations: Optional[Iterable[Transformation]]) -> Any:
    """按声明顺序依次执行转换链，每一步接收上一步的输出"""
    for transformation in transformations or ():
        value = apply_transformation(value, transformation)
    return value


def get_transformation(name: str) -> Optional[TransformationFunc]:
    """
    通过名称获取转换函数

    参数:
        name: 转换名称，如 "trim"、"toNumber"

    返回:
        转换函数或 None
    """
    try:
        return TRANSFORMATION_REGISTRY.get(TransformationType(name))
    except ValueError:
        return None

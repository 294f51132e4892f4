"""
源查询构建与过滤条件安全校验

过滤条件来自用户输入，只做粗粒度的关键字扫描（不是 SQL 解析器）：
字符串字面量中出现的关键字也会被拒绝，刻意构造的绕过也可能漏过。
最终语句再用 sqlparse 确认是单条 SELECT。
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

import sqlparse

from integration_sync.core.errors import UnsafeFilterError
from integration_sync.utils.logging import get_logger

logger = get_logger(__name__)

# 过滤条件中禁止出现的写操作关键字
FORBIDDEN_KEYWORDS = ("INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "TRUNCATE", "CREATE")

_FORBIDDEN_PATTERN = re.compile(
    r"(?:%s)(?:\s|;)" % "|".join(FORBIDDEN_KEYWORDS), re.IGNORECASE
)
_LEADING_WHERE = re.compile(r"^WHERE\s+", re.IGNORECASE)
_OPERATOR_PATTERN = re.compile(
    r"(=|<|>|\b(?:LIKE|IN|IS|NOT|AND|OR|BETWEEN|EXISTS)\b)", re.IGNORECASE
)
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"")
_DATE_PATTERNS = (
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),   # DD/MM/YYYY, D/M/YYYY
    re.compile(r"\b\d{2}-\d{2}-\d{4}\b"),       # DD-MM-YYYY
)
_VIEW_NAME = re.compile(r"[A-Za-z0-9_$]+(?:\.[A-Za-z0-9_$]+)?")


@dataclass
class FilterInspection:
    """过滤条件检查结果"""
    clause: Optional[str]
    safe: bool = True
    warnings: List[str] = field(default_factory=list)


def is_filter_safe(filter_clause: Optional[str]) -> bool:
    """
    判断过滤条件是否不含写操作关键字

    参数:
        filter_clause: 过滤条件

    返回:
        是否安全（空条件视为安全）

    示例:
        >>> is_filter_safe("status = 'open'")
        True
        >>> is_filter_safe("status='x'; DROP TABLE projects")
        False
    """
    if not filter_clause:
        return True
    return _FORBIDDEN_PATTERN.search(filter_clause.upper()) is None


def clean_filter(filter_clause: Optional[str]) -> Optional[str]:
    """去除首尾空白和开头的 WHERE，空条件返回 None"""
    if filter_clause is None:
        return None
    cleaned = _LEADING_WHERE.sub("", filter_clause.strip()).strip()
    return cleaned or None


def inspect_filter(filter_clause: Optional[str]) -> FilterInspection:
    """
    检查过滤条件并给出非致命警告

    警告项:
        - 没有任何比较或逻辑运算符
        - 引号外出现 DD/MM/YYYY 或 DD-MM-YYYY 形式的日期

    参数:
        filter_clause: 原始过滤条件

    返回:
        FilterInspection: 清理后的条件、是否安全、警告列表
    """
    cleaned = clean_filter(filter_clause)
    inspection = FilterInspection(clause=cleaned)
    if cleaned is None:
        return inspection

    inspection.safe = is_filter_safe(cleaned)

    if not _OPERATOR_PATTERN.search(cleaned):
        inspection.warnings.append(f"过滤条件可能语法错误，未发现比较或逻辑运算符: {cleaned}")

    unquoted = _STRING_LITERAL.sub("''", cleaned)
    if any(p.search(unquoted) for p in _DATE_PATTERNS):
        inspection.warnings.append(
            "过滤条件包含未加引号的日期，请使用 'YYYY-MM-DD' 格式，"
            "例如 created_at >= '2025-01-01'"
        )

    return inspection


def quote_view(view: str) -> str:
    """
    校验并引用视图名

    异常:
        UnsafeFilterError: 视图名不是普通标识符
    """
    name = (view or "").strip()
    if not _VIEW_NAME.fullmatch(name):
        raise UnsafeFilterError(f"视图名不合法: {view!r}")
    return ".".join(f"`{part}`" for part in name.split("."))


def build_query(view: str, filter_clause: Optional[str] = None) -> str:
    """
    构建源查询 SELECT * FROM <view> [WHERE <clause>]

    参数:
        view: 源视图名
        filter_clause: 可选过滤条件（允许带 WHERE 前缀）

    返回:
        单条 SELECT 语句

    异常:
        UnsafeFilterError: 过滤条件含写操作关键字，或结果不是单条 SELECT

    示例:
        >>> build_query("projects_view")
        'SELECT * FROM `projects_view`'
        >>> build_query("projects_view", "WHERE status = 'open'")
        "SELECT * FROM `projects_view` WHERE status = 'open'"
    """
    table = quote_view(view)
    inspection = inspect_filter(filter_clause)

    if inspection.clause is None:
        return f"SELECT * FROM {table}"

    if not inspection.safe:
        logger.error("filter_rejected", view=view, filter=filter_clause)
        raise UnsafeFilterError(
            "过滤条件包含禁止的命令 (%s)" % ", ".join(FORBIDDEN_KEYWORDS),
            detail=filter_clause,
        )

    for warning in inspection.warnings:
        logger.warning("filter_warning", view=view, filter=inspection.clause, warning=warning)

    query = f"SELECT * FROM {table} WHERE {inspection.clause}"
    _ensure_single_select(query)

    logger.debug("query_built", query=query)
    return query


def build_count_query(view: str) -> str:
    """构建不带过滤条件的计数查询，用于诊断过滤是否生效"""
    return f"SELECT COUNT(*) AS count FROM {quote_view(view)}"


def _ensure_single_select(query: str) -> None:
    """确认语句是单条 SELECT"""
    statements = [s for s in sqlparse.split(query) if s.strip()]
    if len(statements) != 1:
        raise UnsafeFilterError("过滤条件不能包含多条语句", detail=query)

    parsed = sqlparse.parse(statements[0])
    if not parsed or parsed[0].get_type() != "SELECT":
        raise UnsafeFilterError("源查询必须是 SELECT 语句", detail=query)

"""
记录映射 - 按字段映射把源行转换为目标载荷
"""

from typing import Any, Dict, List, Sequence

from integration_sync.models.integration import FieldMapping, UpdateBehavior
from integration_sync.utils.transformations import apply_transformations


class RecordMapper:
    """
    记录映射器

    对每个映射读取 row[source_field]，执行转换链后写入
    payload[target_field]。不了解目标集合的校验规则。
    """

    def __init__(self, mappings: Sequence[FieldMapping]):
        """
        初始化映射器

        参数:
            mappings: 字段映射列表（按顺序执行）
        """
        self.mappings = list(mappings)

    def map(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """
        映射单行数据

        参数:
            row: 源视图返回的一行

        返回:
            目标载荷；源字段缺失时按 None 进入转换链
        """
        payload: Dict[str, Any] = {}
        for mapping in self.mappings:
            raw = row.get(mapping.source_field) if row else None
            payload[mapping.target_field] = apply_transformations(raw, mapping.transformations)
        return payload

    def map_batch(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """批量映射"""
        return [self.map(row) for row in rows]

    @property
    def target_fields(self) -> List[str]:
        """映射产生的目标字段"""
        return [m.target_field for m in self.mappings]

    @property
    def keep_fields(self) -> List[str]:
        """更新时保留已有值的目标字段"""
        return [
            m.target_field for m in self.mappings
            if m.update_behavior == UpdateBehavior.KEEP
        ]


def map_record(row: Dict[str, Any], mappings: Sequence[FieldMapping]) -> Dict[str, Any]:
    """
    映射单行数据的便捷函数

    示例:
        >>> map_record({"full_name": " Ana "}, [FieldMapping(
        ...     source_field="full_name", target_field="name",
        ...     transformations=[{"type": "trim"}])])
        {'name': 'Ana'}
    """
    return RecordMapper(mappings).map(row)

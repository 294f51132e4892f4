"""
目标集合策略 - 每个集合的必填字段与写入前的补全规则
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from integration_sync.core.errors import RequiredFieldError
from integration_sync.models.integration import TargetCollection


def is_blank(value: Any) -> bool:
    """None 或空白字符串视为缺失"""
    return value is None or (isinstance(value, str) and value.strip() == "")


@dataclass(frozen=True)
class RunContext:
    """
    单次运行的上下文，在运行开始时计算一次后传给每一行

    属性:
        collection_was_empty: 运行开始时目标集合是否为空（为空则不做匹配查询）
        default_owner: 项目默认负责人（createdBy），无法解析时为 None
        default_password: 新建用户的初始密码
    """
    collection_was_empty: bool = False
    default_owner: Optional[Any] = None
    default_password: str = ""


class CollectionPolicy:
    """集合策略基类"""

    collection: TargetCollection
    required_fields: Tuple[str, ...] = ()
    # 每次写入都由策略决定的字段，不受 keep 更新行为影响
    forced_fields: Tuple[str, ...] = ()

    def missing_fields(self, payload: Dict[str, Any]) -> List[str]:
        """返回缺失的必填字段"""
        return [f for f in self.required_fields if is_blank(payload.get(f))]

    def check_required(self, payload: Dict[str, Any], detail: Optional[str] = None) -> None:
        """
        必填字段校验

        异常:
            RequiredFieldError: 存在缺失字段
        """
        missing = self.missing_fields(payload)
        if missing:
            raise RequiredFieldError(
                f"缺少必填字段 (required): {', '.join(missing)}", detail=detail
            )

    def enrich(self, payload: Dict[str, Any], context: RunContext) -> Dict[str, Any]:
        """必填校验通过后、匹配之前的补全"""
        return payload

    def prepare_update(
        self,
        payload: Dict[str, Any],
        existing: Dict[str, Any],
        supplied: Set[str]
    ) -> Dict[str, Any]:
        """
        更新路径的最终载荷

        参数:
            payload: 补全后的载荷
            existing: 已存在的实体
            supplied: 映射直接给出非空值的字段
        """
        return payload

    def prepare_insert(self, payload: Dict[str, Any], context: RunContext) -> Dict[str, Any]:
        """新增路径的最终载荷"""
        return payload


class ProjectPolicy(CollectionPolicy):
    """
    项目集合

    - 缺少 createdBy 时使用运行级默认负责人，无法解析则失败
    - active 始终写为 True，同步不会停用项目
    """

    collection = TargetCollection.PROJECTS
    required_fields = ("projectId", "client", "projectName")
    forced_fields = ("active",)

    def enrich(self, payload: Dict[str, Any], context: RunContext) -> Dict[str, Any]:
        if is_blank(payload.get("createdBy")):
            payload.pop("createdBy", None)
            if context.default_owner is None:
                raise RequiredFieldError(
                    "createdBy 为项目必填字段 (required)，且未找到管理员用户"
                )
            payload["createdBy"] = context.default_owner

        payload["active"] = True
        return payload

    def prepare_update(
        self,
        payload: Dict[str, Any],
        existing: Dict[str, Any],
        supplied: Set[str]
    ) -> Dict[str, Any]:
        # 默认负责人只用于新增，更新时保留原负责人
        if "createdBy" not in supplied and not is_blank(existing.get("createdBy")):
            payload.pop("createdBy", None)
        return payload


class UserPolicy(CollectionPolicy):
    """
    用户集合

    - 更新时未提供密码则不覆盖已有密码
    - 新增时未提供密码则使用初始密码并要求首次登录修改
    """

    collection = TargetCollection.USERS
    required_fields = ("name", "email")

    def prepare_update(
        self,
        payload: Dict[str, Any],
        existing: Dict[str, Any],
        supplied: Set[str]
    ) -> Dict[str, Any]:
        if is_blank(payload.get("password")):
            payload.pop("password", None)
        return payload

    def prepare_insert(self, payload: Dict[str, Any], context: RunContext) -> Dict[str, Any]:
        if is_blank(payload.get("password")):
            payload["password"] = context.default_password
            payload["mustChangePassword"] = True
        return payload


class TeamPolicy(CollectionPolicy):
    """团队集合"""

    collection = TargetCollection.TEAMS
    required_fields = ("name",)


# 集合策略表
COLLECTION_POLICIES: Dict[TargetCollection, CollectionPolicy] = {
    TargetCollection.PROJECTS: ProjectPolicy(),
    TargetCollection.USERS: UserPolicy(),
    TargetCollection.TEAMS: TeamPolicy(),
}


def get_policy(collection: TargetCollection) -> CollectionPolicy:
    """获取集合策略"""
    if collection not in COLLECTION_POLICIES:
        raise ValueError(f"不支持的目标集合: {collection}")
    return COLLECTION_POLICIES[collection]

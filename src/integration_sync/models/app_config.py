"""
应用配置模型 - 源数据库、文档存储与同步参数
"""

import os
import re
from typing import Any, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from integration_sync.models.integration import IntegrationConfig

# 同步创建的用户在未映射密码时使用的初始密码
DEFAULT_PASSWORD = "Sync@123"


class MySQLSourceConfig(BaseModel):
    """
    外部 MySQL 数据源配置（只读）

    属性:
        host: 主机地址
        port: 端口
        database: 数据库名
        username: 用户名
        password: 密码
        charset: 字符集
        pool_size: 连接池大小
        connect_timeout: 连接超时（秒）
    """
    model_config = ConfigDict(title="MySQL Source")

    type: Literal["mysql"] = Field(default="mysql", description="数据源类型")
    host: str = Field(..., description="主机地址")
    port: int = Field(default=3306, ge=1, le=65535, description="端口")
    database: str = Field(..., description="数据库名")
    username: str = Field(..., description="用户名")
    password: str = Field(..., description="密码")
    charset: str = Field(default="utf8mb4", description="字符集")
    pool_size: int = Field(default=10, ge=1, le=50, description="连接池大小")
    connect_timeout: int = Field(default=10, ge=1, description="连接超时（秒）")


class StoreConfig(BaseModel):
    """文档存储配置"""
    db_path: str = Field(default="integration_sync.db", description="SQLite 文档库路径")

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """验证存储路径"""
        if not v or not v.endswith(".db"):
            raise ValueError("存储路径必须以 .db 结尾")
        return v


class SyncSettings(BaseModel):
    """
    同步行为参数

    属性:
        default_password: 新建用户未映射密码时的初始密码
        admin_profile: 查找默认项目负责人时使用的管理员角色
    """
    default_password: str = Field(default=DEFAULT_PASSWORD, min_length=1, description="初始密码")
    admin_profile: str = Field(default="admin", min_length=1, description="管理员角色")


class AppConfig(BaseModel):
    """
    应用配置根对象

    属性:
        source: 外部数据源配置
        store: 文档存储配置
        sync: 同步行为参数
        integrations: 需要导入存储的集成配置
        log_level: 日志级别
        json_logs: 是否输出 JSON 日志
    """
    source: MySQLSourceConfig = Field(..., description="数据源配置")
    store: StoreConfig = Field(default_factory=StoreConfig, description="存储配置")
    sync: SyncSettings = Field(default_factory=SyncSettings, description="同步参数")
    integrations: List[IntegrationConfig] = Field(default_factory=list, description="集成配置")
    log_level: str = Field(default="INFO", description="日志级别")
    json_logs: bool = Field(default=False, description="JSON 日志")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """验证日志级别"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"日志级别必须是以下之一: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_integration_ids_unique(self) -> "AppConfig":
        """验证集成配置标识唯一"""
        ids = [i.id for i in self.integrations]
        if len(ids) != len(set(ids)):
            raise ValueError("集成配置 id 必须唯一")
        return self


def expand_env_vars(value: Any) -> Any:
    """
    递归展开值中的环境变量

    支持格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}
    """
    if isinstance(value, str):
        pattern = r'\$\{([^}:-]+)(?::-([^}]*))?\}'

        def replacer(match: "re.Match[str]") -> str:
            var_name = match.group(1)
            default_val = match.group(2)
            env_value = os.getenv(var_name)
            if env_value is None:
                if default_val is not None:
                    return default_val
                raise ValueError(f"环境变量 {var_name} 未设置且无默认值")
            return env_value

        return re.sub(pattern, replacer, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value

"""
配置加载模块 - 支持 YAML 和环境变量
"""

from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from integration_sync.models.app_config import AppConfig, expand_env_vars


class ConfigError(Exception):
    """配置错误"""
    pass


def _parse(raw_config: Any) -> AppConfig:
    """展开环境变量并验证"""
    if not isinstance(raw_config, dict):
        raise ConfigError("配置文件必须是一个对象")

    try:
        expanded: Dict[str, Any] = expand_env_vars(raw_config)
        return AppConfig(**expanded)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"配置验证失败: {e}")


def load_config(path: str | Path) -> AppConfig:
    """
    加载 YAML 配置文件

    支持环境变量替换，格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}

    参数:
        path: 配置文件路径

    返回:
        AppConfig: 验证后的配置对象

    异常:
        ConfigError: 配置文件不存在、格式错误或验证失败

    示例:
        ```python
        config = load_config("integration_sync.yaml")
        print(config.source.host)
        ```
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"配置文件不存在: {config_path}")

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"读取配置文件失败: {e}")

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 解析失败: {e}")

    return _parse(raw_config)


def load_config_from_string(content: str) -> AppConfig:
    """
    从字符串加载配置（用于测试）

    参数:
        content: YAML 配置字符串

    返回:
        AppConfig: 验证后的配置对象
    """
    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 解析失败: {e}")
    return _parse(raw_config)


def generate_config_template() -> str:
    """
    生成配置模板

    返回:
        str: YAML 配置模板
    """
    return '''# 集成同步引擎配置

# 外部 MySQL 数据源（只读视图）
source:
  type: "mysql"
  host: "${MYSQL_HOST:-localhost}"
  port: 3306
  database: "${MYSQL_DATABASE}"
  username: "${MYSQL_USER}"
  password: "${MYSQL_PASSWORD}"
  pool_size: 10

# 文档存储（目标集合与集成配置）
store:
  db_path: "./integration_sync.db"

# 同步行为
sync:
  default_password: "${SYNC_DEFAULT_PASSWORD:-Sync@123}"  # 新建用户未映射密码时使用
  admin_profile: "admin"                                   # 默认项目负责人角色

# 集成配置（integration-sync import 导入存储）
integrations:
  - id: "projects-main"
    name: "项目同步"
    source_view: "organization_projects"
    filter_clause: "created_at >= '2025-01-01'"
    source_key_field: "project_number"
    target_key_field: "projectId"
    target_collection: "projects"
    mappings:
      - source_field: "project_number"
        target_field: "projectId"
        transformations:
          - type: "toString"
          - type: "trim"
      - source_field: "customer"
        target_field: "client"
        transformations:
          - type: "trim"
          - type: "defaultValue"
            options:
              default_value: "N/A"
      - source_field: "title"
        target_field: "projectName"
      - source_field: "manager"
        target_field: "projectManager"
        update_behavior: "keep"   # 已有项目保留原负责人
    schedule:
      mode: "preset"
      preset:
        type: "daily"
        time_of_day: "06:00"

# 全局配置
log_level: "INFO"     # 日志级别 (DEBUG, INFO, WARNING, ERROR)
json_logs: false      # 调度环境建议开启
'''


def save_config_template(path: str | Path) -> None:
    """
    保存配置模板到文件

    参数:
        path: 输出文件路径
    """
    config_path = Path(path)
    config_path.write_text(generate_config_template(), encoding="utf-8")

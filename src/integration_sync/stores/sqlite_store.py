"""
SQLite 文档存储 - 以 JSON 文档保存目标实体和集成配置
"""

import json
import sqlite3
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from integration_sync.core.errors import DuplicateKeyError, StoreError
from integration_sync.models.integration import IntegrationConfig, TargetCollection
from integration_sync.stores.base import (
    ID_FIELD,
    UNIQUE_FIELDS,
    ConfigurationStore,
    EntityStore,
)
from integration_sync.utils.logging import get_logger

logger = get_logger(__name__)


def _json_default(value: Any) -> Any:
    """序列化 JSON 不支持的类型"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"无法序列化类型: {type(value).__name__}")


def _json_path(field: str) -> str:
    """字段名转 JSON 路径"""
    return '$."%s"' % field.replace('"', '\\"')


class SQLiteDocumentStore:
    """
    SQLite 文档库

    一个文件同时保存:
        - entities: 各目标集合的实体文档
        - integrations: 集成配置文档（含执行历史）

    每次操作打开新连接，不持有长连接。
    """

    def __init__(self, db_path: Union[str, Path] = "integration_sync.db"):
        """
        初始化文档库

        参数:
            db_path: SQLite 文件路径
        """
        self.db_path = Path(db_path)
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """获取数据库连接"""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        """确保表结构存在"""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS entities (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body JSON NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS integrations (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    active BOOLEAN NOT NULL DEFAULT TRUE,
                    body JSON NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # 各集合唯一字段使用表达式部分索引
            for collection, fields in UNIQUE_FIELDS.items():
                for field in fields:
                    conn.execute(f"""
                        CREATE UNIQUE INDEX IF NOT EXISTS
                            idx_entities_{collection.value}_{field}
                        ON entities(json_extract(body, '{_json_path(field)}'))
                        WHERE collection = '{collection.value}'
                    """)

    def entity_store(self, collection: TargetCollection) -> "SQLiteEntityStore":
        """获取某个集合的实体存储"""
        return SQLiteEntityStore(self, collection)

    def configuration_store(self) -> "SQLiteConfigurationStore":
        """获取集成配置存储"""
        return SQLiteConfigurationStore(self)


class SQLiteEntityStore(EntityStore):
    """SQLite 文档库中的一个目标集合"""

    def __init__(self, database: SQLiteDocumentStore, collection: TargetCollection):
        super().__init__(collection)
        self._db = database

    async def count(self) -> int:
        with self._db._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM entities WHERE collection = ?",
                (self.collection.value,)
            ).fetchone()
        return int(row["count"])

    async def find_one(self, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        clauses = ["collection = ?"]
        params: List[Any] = [self.collection.value]
        for field, value in criteria.items():
            if field == ID_FIELD:
                clauses.append("id IS ?")
            else:
                clauses.append("json_extract(body, ?) IS ?")
                params.append(_json_path(field))
            params.append(value)

        sql = (
            "SELECT body FROM entities WHERE "
            + " AND ".join(clauses)
            + " ORDER BY created_at, rowid LIMIT 1"
        )
        try:
            with self._db._get_connection() as conn:
                row = conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"查询实体失败: {e}")
        return json.loads(row["body"]) if row else None

    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document = dict(document)
        document.setdefault(ID_FIELD, uuid.uuid4().hex)
        body = json.dumps(document, default=_json_default, ensure_ascii=False)

        try:
            with self._db._get_connection() as conn:
                conn.execute(
                    "INSERT INTO entities (collection, id, body) VALUES (?, ?, ?)",
                    (self.collection.value, str(document[ID_FIELD]), body)
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateKeyError(f"唯一字段冲突 ({self.collection.value}): {e}")
        except sqlite3.Error as e:
            raise StoreError(f"写入实体失败: {e}")

        return json.loads(body)

    async def update(self, entity_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with self._db._get_connection() as conn:
                row = conn.execute(
                    "SELECT body FROM entities WHERE collection = ? AND id = ?",
                    (self.collection.value, entity_id)
                ).fetchone()
                if row is None:
                    raise StoreError(f"实体不存在: {entity_id}")

                merged = {**json.loads(row["body"]), **changes, ID_FIELD: entity_id}
                body = json.dumps(merged, default=_json_default, ensure_ascii=False)
                conn.execute(
                    """
                    UPDATE entities SET body = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE collection = ? AND id = ?
                    """,
                    (body, self.collection.value, entity_id)
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateKeyError(f"唯一字段冲突 ({self.collection.value}): {e}")
        except sqlite3.Error as e:
            raise StoreError(f"更新实体失败: {e}")

        return json.loads(body)


class SQLiteConfigurationStore(ConfigurationStore):
    """SQLite 文档库中的集成配置"""

    def __init__(self, database: SQLiteDocumentStore):
        self._db = database

    async def get(self, config_id: str) -> Optional[IntegrationConfig]:
        with self._db._get_connection() as conn:
            row = conn.execute(
                "SELECT body FROM integrations WHERE id = ?", (config_id,)
            ).fetchone()
        return IntegrationConfig.model_validate_json(row["body"]) if row else None

    async def save(self, config: IntegrationConfig) -> IntegrationConfig:
        config.updated_at = datetime.now(timezone.utc)
        with self._db._get_connection() as conn:
            conn.execute("""
                INSERT INTO integrations (id, name, active, body, updated_at)
                VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    active = excluded.active,
                    body = excluded.body,
                    updated_at = CURRENT_TIMESTAMP
            """, (config.id, config.name, config.active, config.model_dump_json()))

        logger.debug("integration_saved", config_id=config.id, history=len(config.history))
        return config

    async def list(self, active_only: bool = False) -> List[IntegrationConfig]:
        sql = "SELECT body FROM integrations"
        if active_only:
            sql += " WHERE active = 1"
        sql += " ORDER BY name"
        with self._db._get_connection() as conn:
            rows = conn.execute(sql).fetchall()
        return [IntegrationConfig.model_validate_json(r["body"]) for r in rows]

    async def delete(self, config_id: str) -> bool:
        with self._db._get_connection() as conn:
            cursor = conn.execute("DELETE FROM integrations WHERE id = ?", (config_id,))
        return cursor.rowcount > 0

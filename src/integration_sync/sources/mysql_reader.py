"""
MySQL 只读数据源实现
"""

from typing import Any, Dict, List, Optional

import aiomysql

from integration_sync.core.errors import SourceConnectionError, SourceQueryError
from integration_sync.models.app_config import MySQLSourceConfig
from integration_sync.sources.base import SourceReader
from integration_sync.utils.logging import get_logger
from integration_sync.utils.query_builder import build_count_query

logger = get_logger(__name__)


class MySQLSourceReader(SourceReader):
    """
    MySQL 视图读取器

    使用 aiomysql 连接池和 DictCursor，每次运行一次阻塞读取，
    不分页、不流式。
    """

    def __init__(self, config: MySQLSourceConfig, name: str = "mysql_source"):
        """
        初始化读取器

        参数:
            config: MySQL 数据源配置
        """
        super().__init__(name)
        self.config = config
        self._pool: Optional[aiomysql.Pool] = None

    async def connect(self) -> None:
        """建立 MySQL 连接池"""
        if self._pool is not None:
            return
        try:
            self._pool = await aiomysql.create_pool(
                host=self.config.host,
                port=self.config.port,
                user=self.config.username,
                password=self.config.password,
                db=self.config.database,
                charset=self.config.charset,
                minsize=1,
                maxsize=self.config.pool_size,
                connect_timeout=self.config.connect_timeout,
                autocommit=True,
            )
            logger.info(
                "mysql_source_connected",
                source=self.name,
                host=self.config.host,
                database=self.config.database
            )
        except Exception as e:
            logger.error(
                "mysql_source_connect_failed",
                source=self.name,
                host=self.config.host,
                error=str(e)
            )
            raise SourceConnectionError(f"无法连接数据源 {self.config.host}: {e}") from e

    async def disconnect(self) -> None:
        """关闭连接池"""
        if self._pool:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None
        logger.info("mysql_source_disconnected", source=self.name)

    async def fetch_rows(self, query: str) -> List[Dict[str, Any]]:
        """执行 SELECT 并返回字典行"""
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.cursor(aiomysql.DictCursor) as cursor:
                    await cursor.execute(query)
                    rows = await cursor.fetchall()
        except Exception as e:
            code = e.args[0] if e.args else "UNKNOWN"
            logger.error("mysql_query_failed", query=query, code=code, error=str(e))
            raise SourceQueryError(
                f"源查询执行失败: {e}。请检查 WHERE 条件语法",
                query=query,
                detail=f"错误码: {code}",
            ) from e

        logger.debug("mysql_query_done", query=query, rows=len(rows))
        return list(rows)

    async def count_rows(self, view: str) -> int:
        """统计视图总行数"""
        rows = await self.fetch_rows(build_count_query(view))
        if not rows:
            return 0
        return int(rows[0].get("count") or 0)

    async def _get_pool(self) -> aiomysql.Pool:
        """获取连接池，未连接时自动连接"""
        if self._pool is None:
            await self.connect()
        return self._pool


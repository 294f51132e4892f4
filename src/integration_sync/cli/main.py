"""
CLI 命令行入口 - 使用 Click 框架
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click

from integration_sync import __version__
from integration_sync.config import ConfigError, load_config, save_config_template
from integration_sync.core.errors import SyncError
from integration_sync.models.app_config import AppConfig
from integration_sync.models.integration import TargetCollection
from integration_sync.stores.sqlite_store import SQLiteDocumentStore
from integration_sync.utils.logging import configure_logging, get_logger
from integration_sync.utils.query_builder import build_query, inspect_filter

logger = get_logger(__name__)

_STATUS_ICONS = {"success": "✓", "partial": "⚠", "error": "✗"}


def _load(config_path: str) -> AppConfig:
    """加载配置，失败时退出"""
    try:
        return load_config(config_path)
    except ConfigError as e:
        click.echo(f"✗ 配置错误: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="INFO",
    help="日志级别",
)
@click.option("--json-logs", is_flag=True, default=False, help="输出 JSON 日志")
@click.version_option(version=__version__, prog_name="integration-sync")
@click.pass_context
def cli(ctx: click.Context, log_level: str, json_logs: bool) -> None:
    """
    集成同步引擎 CLI

    从外部 MySQL 视图读取数据，按映射转换后同步到 projects/users/teams。
    """
    configure_logging(log_level=log_level, json_format=json_logs)

    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@cli.command()
@click.argument("output_path", type=click.Path(), default="integration_sync.yaml")
def init(output_path: str) -> None:
    """
    生成配置文件模板

    示例:
        integration-sync init integration_sync.yaml
    """
    path = Path(output_path)

    if path.exists():
        click.confirm(f"文件 {output_path} 已存在，是否覆盖？", abort=True)

    save_config_template(output_path)
    click.echo(f"✓ 配置模板已生成: {output_path}")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
def validate(config_path: str) -> None:
    """
    验证配置文件和其中每个过滤条件

    示例:
        integration-sync validate integration_sync.yaml
    """
    config = _load(config_path)
    click.echo("✓ 配置验证通过")
    click.echo(f"  数据源: {config.source.host}/{config.source.database}")
    click.echo(f"  文档库: {config.store.db_path}")
    click.echo(f"  集成数: {len(config.integrations)}")

    invalid = False
    for integration in config.integrations:
        try:
            build_query(integration.source_view, integration.filter_clause)
        except SyncError as e:
            click.echo(f"  ✗ {integration.id}: {e}", err=True)
            invalid = True
            continue
        for warning in inspect_filter(integration.filter_clause).warnings:
            click.echo(f"  ⚠ {integration.id}: {warning}")

    if invalid:
        sys.exit(1)


@cli.command(name="import")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
def import_integrations(config: str) -> None:
    """
    把配置文件中的集成配置导入文档库

    已存在的配置会被覆盖定义，但保留执行历史。

    示例:
        integration-sync import -c integration_sync.yaml
    """
    cfg = _load(config)
    asyncio.run(_import(cfg))


@cli.command(name="list")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
def list_integrations(config: str) -> None:
    """
    列出文档库中的集成配置

    示例:
        integration-sync list -c integration_sync.yaml
    """
    cfg = _load(config)
    store = SQLiteDocumentStore(cfg.store.db_path).configuration_store()
    integrations = asyncio.run(store.list())

    if not integrations:
        click.echo("暂无集成配置")
        return

    for integration in integrations:
        info = integration.summary()
        state = "启用" if info["active"] else "停用"
        last = info["last_status"] or "-"
        click.echo(
            f"{info['id']}  {info['name']}  [{state}]  "
            f"{info['source_view']} -> {info['target_collection']}  最近: {last}"
        )


@cli.command()
@click.argument("config_id")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
@click.option("--user", "-u", "user_id", help="触发运行的用户 id（默认负责人后备）")
def execute(config_id: str, config: str, user_id: Optional[str]) -> None:
    """
    立即执行一次集成同步

    示例:
        integration-sync execute projects-main -c integration_sync.yaml
    """
    cfg = _load(config)
    try:
        result = asyncio.run(_execute(cfg, config_id, user_id))
    except SyncError as e:
        click.echo(f"✗ 同步失败: {e}", err=True)
        sys.exit(1)

    icon = _STATUS_ICONS.get(result.status.value, "")
    click.echo(f"{icon} 状态: {result.status.value}")
    click.echo(f"  新增: {result.inserted}")
    click.echo(f"  更新: {result.updated}")
    click.echo(f"  失败: {result.failed}")
    click.echo(f"  记录: {result.total}")
    if result.status.value == "error":
        sys.exit(2)


@cli.command()
@click.argument("config_id")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
def history(config_id: str, config: str) -> None:
    """
    查看集成配置的执行历史（最近 5 次）

    示例:
        integration-sync history projects-main -c integration_sync.yaml
    """
    cfg = _load(config)
    store = SQLiteDocumentStore(cfg.store.db_path).configuration_store()
    integration = asyncio.run(store.get(config_id))
    if integration is None:
        click.echo(f"✗ 集成配置不存在: {config_id}", err=True)
        sys.exit(1)

    if not integration.history:
        click.echo("暂无执行记录")
        return

    for entry in integration.history:
        icon = _STATUS_ICONS.get(entry.status.value, "")
        click.echo(
            f"{icon} {entry.started_at.isoformat()}  {entry.status.value}  "
            f"新增 {entry.inserted} / 更新 {entry.updated} / 失败 {entry.failed} "
            f"/ 记录 {entry.total_records}  ({entry.duration_seconds:.2f}s)"
        )
        if entry.message:
            click.echo(f"    {entry.message}")
        for bucket in entry.errors:
            click.echo(f"    - [{bucket.type.value}] {bucket.message} ×{bucket.count}")
            for example in bucket.examples:
                click.echo(f"        {example}")


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="配置文件路径",
)
def schedules(config: str) -> None:
    """
    显示启用集成的调度 cron 表达式（供外部调度器使用）

    示例:
        integration-sync schedules -c integration_sync.yaml
    """
    cfg = _load(config)
    store = SQLiteDocumentStore(cfg.store.db_path).configuration_store()
    for integration in asyncio.run(store.list(active_only=True)):
        expression = integration.schedule.to_cron_expression()
        if expression:
            click.echo(f"{expression}\t{integration.id}")


@cli.command(name="check-filter")
@click.argument("view")
@click.argument("filter_clause")
def check_filter(view: str, filter_clause: str) -> None:
    """
    检查过滤条件并显示生成的查询

    示例:
        integration-sync check-filter projects_view "created_at >= '2025-01-01'"
    """
    try:
        query = build_query(view, filter_clause)
    except SyncError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)

    for warning in inspect_filter(filter_clause).warnings:
        click.echo(f"⚠ {warning}")
    click.echo(query)


# ============================================================================
# 异步执行函数
# ============================================================================

async def _import(cfg: AppConfig) -> None:
    """导入集成配置，保留已有执行历史"""
    store = SQLiteDocumentStore(cfg.store.db_path).configuration_store()
    for integration in cfg.integrations:
        existing = await store.get(integration.id)
        if existing is not None:
            integration.history = existing.history
            integration.created_at = existing.created_at
        await store.save(integration)
        logger.info("integration_imported", config_id=integration.id, replaced=existing is not None)
        click.echo(f"✓ 已导入: {integration.id} ({integration.name})")


async def _execute(cfg: AppConfig, config_id: str, user_id: Optional[str]):
    """创建引擎并执行一次同步"""
    from integration_sync.core.engine import SyncEngine
    from integration_sync.sources.mysql_reader import MySQLSourceReader

    database = SQLiteDocumentStore(cfg.store.db_path)
    source = MySQLSourceReader(cfg.source)
    engine = SyncEngine(
        config_store=database.configuration_store(),
        source=source,
        entity_stores={c: database.entity_store(c) for c in TargetCollection},
        settings=cfg.sync,
    )

    try:
        return await engine.execute(config_id, invoking_user_id=user_id)
    finally:
        await source.disconnect()


if __name__ == "__main__":
    cli()

"""
SyncEngine 集成测试 (unittest)
"""

import asyncio
import unittest
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock

from integration_sync.core.engine import SyncEngine
from integration_sync.core.errors import (
    ConfigurationNotFoundError,
    ExecutionInProgressError,
    SourceConnectionError,
    SourceQueryError,
    UnsafeFilterError,
)
from integration_sync.models.app_config import DEFAULT_PASSWORD, SyncSettings
from integration_sync.models.execution import ErrorType, ExecutionStatus
from integration_sync.models.integration import MAX_HISTORY, TargetCollection
from integration_sync.stores.memory import InMemoryConfigurationStore, InMemoryEntityStore

from conftest import (
    FakeSourceReader,
    create_mock_source_reader,
    get_sample_project_rows,
    make_integration_config,
)


class EngineTestCase(IsolatedAsyncioTestCase):
    """引擎测试基类"""

    def setUp(self):
        self.users = InMemoryEntityStore(TargetCollection.USERS, [
            {"_id": "admin-1", "email": "admin@example.com", "name": "Admin",
             "profile": "admin", "active": True},
        ])
        self.projects = InMemoryEntityStore(TargetCollection.PROJECTS)
        self.teams = InMemoryEntityStore(TargetCollection.TEAMS)

    def _engine(self, config, source, **settings):
        self.config_store = InMemoryConfigurationStore([config])
        return SyncEngine(
            config_store=self.config_store,
            source=source,
            entity_stores={
                TargetCollection.USERS: self.users,
                TargetCollection.PROJECTS: self.projects,
                TargetCollection.TEAMS: self.teams,
            },
            settings=SyncSettings(**settings),
        )

    async def _history(self, config_id):
        return (await self.config_store.get(config_id)).history


class TestProjectSync(EngineTestCase):
    """项目同步测试"""

    async def test_first_run_inserts_all(self):
        """测试首次运行全部新增并使用管理员作为负责人"""
        config = make_integration_config()
        engine = self._engine(config, FakeSourceReader(get_sample_project_rows()))

        result = await engine.execute(config.id)

        self.assertEqual(result.status, ExecutionStatus.SUCCESS)
        self.assertEqual((result.inserted, result.updated, result.failed, result.total), (3, 0, 0, 3))
        projects = self.projects.all()
        self.assertEqual({p["projectId"] for p in projects}, {"1001", "1002", "1003"})
        self.assertTrue(all(p["createdBy"] == "admin-1" for p in projects))
        self.assertTrue(all(p["active"] is True for p in projects))

    async def test_idempotent(self):
        """测试相同输入再次运行只产生更新"""
        config = make_integration_config()
        engine = self._engine(config, FakeSourceReader(get_sample_project_rows()))

        await engine.execute(config.id)
        snapshot = sorted(self.projects.all(), key=lambda p: p["projectId"])
        result = await engine.execute(config.id)

        self.assertEqual((result.inserted, result.updated), (0, 3))
        self.assertEqual(sorted(self.projects.all(), key=lambda p: p["projectId"]), snapshot)

    async def test_history_bounded(self):
        """测试 6 次以上运行后历史只保留最近 5 条"""
        config = make_integration_config()
        engine = self._engine(config, FakeSourceReader(get_sample_project_rows()))

        for _ in range(MAX_HISTORY + 2):
            await engine.execute(config.id)

        history = await self._history(config.id)
        self.assertEqual(len(history), MAX_HISTORY)
        starts = [h.started_at for h in history]
        self.assertEqual(starts, sorted(starts, reverse=True))
        self.assertTrue(all(h.updated == 3 for h in history))

    async def test_keep_vs_update(self):
        """测试 keep 字段保留已有值，update 字段被覆盖"""
        config = make_integration_config(mappings=[
            {"source_field": "project_number", "target_field": "projectId",
             "transformations": [{"type": "toString"}]},
            {"source_field": "customer", "target_field": "client"},
            {"source_field": "title", "target_field": "projectName"},
            {"source_field": "manager", "target_field": "projectManager", "update_behavior": "keep"},
        ])
        self.projects = InMemoryEntityStore(TargetCollection.PROJECTS, [
            {"_id": "p1", "projectId": "1001", "client": "旧客户", "projectName": "旧名称",
             "projectManager": "手工指定", "createdBy": "u7", "active": True},
        ])
        engine = self._engine(config, FakeSourceReader(get_sample_project_rows()[:1]))

        result = await engine.execute(config.id)

        self.assertEqual(result.updated, 1)
        project = self.projects.all()[0]
        self.assertEqual(project["projectManager"], "手工指定")
        self.assertEqual(project["client"], "华北电力")
        self.assertEqual(project["createdBy"], "u7")

    async def test_deactivation_guard(self):
        """测试映射设置 active=false 时项目仍为启用"""
        config = make_integration_config(mappings=[
            {"source_field": "project_number", "target_field": "projectId"},
            {"source_field": "customer", "target_field": "client"},
            {"source_field": "title", "target_field": "projectName"},
            {"source_field": "status", "target_field": "active",
             "transformations": [{"type": "mapValue", "options": {"map": [{"from": "C", "to": False}]}}]},
        ])
        rows = [{"project_number": "P-1", "customer": "X", "title": "Y", "status": "C"}]
        engine = self._engine(config, FakeSourceReader(rows))

        await engine.execute(config.id)
        await engine.execute(config.id)

        self.assertIs(self.projects.all()[0]["active"], True)

    async def test_default_owner_falls_back_to_invoking_user(self):
        """测试没有管理员时使用触发用户作为负责人"""
        self.users = InMemoryEntityStore(TargetCollection.USERS)
        config = make_integration_config()
        engine = self._engine(config, FakeSourceReader(get_sample_project_rows()[:1]))

        await engine.execute(config.id, invoking_user_id="user-42")

        self.assertEqual(self.projects.all()[0]["createdBy"], "user-42")

    async def test_no_owner_fails_rows(self):
        """测试无法解析负责人时行级失败"""
        self.users = InMemoryEntityStore(TargetCollection.USERS)
        config = make_integration_config()
        engine = self._engine(config, FakeSourceReader(get_sample_project_rows()))

        result = await engine.execute(config.id)

        self.assertEqual(result.status, ExecutionStatus.ERROR)
        self.assertEqual(result.failed, 3)
        history = await self._history(config.id)
        self.assertEqual(history[0].errors[0].type, ErrorType.REQUIRED)
        self.assertEqual(history[0].errors[0].count, 3)


class TestUserSync(EngineTestCase):
    """用户同步测试"""

    def _config(self, with_password=False):
        mappings = [
            {"source_field": "email", "target_field": "email"},
            {"source_field": "full_name", "target_field": "name",
             "transformations": [{"type": "trim"}, {"type": "defaultValue", "options": {"defaultValue": ""}}]},
        ]
        if with_password:
            mappings.append({"source_field": "senha", "target_field": "password"})
        return make_integration_config("users", mappings=mappings)

    async def test_example_scenario(self):
        """测试单行用户新增到空集合"""
        self.users = InMemoryEntityStore(TargetCollection.USERS)
        config = self._config()
        engine = self._engine(config, FakeSourceReader([{"email": "a@b.com", "full_name": "  Ana  "}]))

        result = await engine.execute(config.id)

        self.assertEqual(result.inserted, 1)
        self.assertEqual(result.status, ExecutionStatus.SUCCESS)
        user = self.users.all()[0]
        self.assertEqual(user["email"], "a@b.com")
        self.assertEqual(user["name"], "Ana")
        self.assertEqual(user["password"], DEFAULT_PASSWORD)
        self.assertTrue(user["mustChangePassword"])

    async def test_custom_default_password(self):
        """测试配置的初始密码"""
        self.users = InMemoryEntityStore(TargetCollection.USERS)
        config = self._config()
        engine = self._engine(
            config,
            FakeSourceReader([{"email": "a@b.com", "full_name": "Ana"}]),
            default_password="Troca@2025"
        )

        await engine.execute(config.id)

        self.assertEqual(self.users.all()[0]["password"], "Troca@2025")

    async def test_password_preserved(self):
        """测试源行没有密码时不覆盖已有密码"""
        config = self._config(with_password=True)
        self.users = InMemoryEntityStore(TargetCollection.USERS, [
            {"_id": "u1", "email": "a@b.com", "name": "Old", "password": "hashed"},
        ])
        engine = self._engine(config, FakeSourceReader([
            {"email": "a@b.com", "full_name": "Ana", "senha": None},
            {"email": "c@d.com", "full_name": "Caio", "senha": "própria"},
        ]))

        result = await engine.execute(config.id)

        self.assertEqual((result.inserted, result.updated), (1, 1))
        users = {u["email"]: u for u in self.users.all()}
        self.assertEqual(users["a@b.com"]["password"], "hashed")
        self.assertEqual(users["a@b.com"]["name"], "Ana")
        self.assertEqual(users["c@d.com"]["password"], "própria")
        self.assertNotIn("mustChangePassword", users["c@d.com"])


class TestEmptyCollection(EngineTestCase):
    """空集合安全测试"""

    async def test_empty_collection_never_updates(self):
        """测试运行开始时集合为空则全部新增且不做匹配查询"""
        config = make_integration_config("teams")
        self.teams.find_one = AsyncMock(return_value={"_id": "ghost", "name": "Ops"})
        engine = self._engine(config, FakeSourceReader([{"team_name": "Ops"}, {"team_name": "Dev"}]))

        result = await engine.execute(config.id)

        self.assertEqual((result.inserted, result.updated), (2, 0))
        self.teams.find_one.assert_not_awaited()


class TestRunFailures(EngineTestCase):
    """运行级失败测试"""

    async def test_configuration_not_found(self):
        """测试配置不存在"""
        engine = self._engine(make_integration_config(), FakeSourceReader())
        with self.assertRaises(ConfigurationNotFoundError):
            await engine.execute("missing")

    async def test_unsafe_filter(self):
        """测试不安全过滤条件在查询前失败"""
        config = make_integration_config(filter_clause="status='x'; DROP TABLE projects")
        source = create_mock_source_reader(get_sample_project_rows())
        engine = self._engine(config, source)

        with self.assertRaises(UnsafeFilterError):
            await engine.execute(config.id)

        source.fetch_rows.assert_not_awaited()
        source.count_rows.assert_not_awaited()
        self.assertEqual(await self.projects.count(), 0)

        history = await self._history(config.id)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].status, ExecutionStatus.ERROR)
        self.assertEqual((history[0].inserted, history[0].updated, history[0].total_records), (0, 0, 0))

    async def test_source_query_failure(self):
        """测试源查询失败写入错误记录"""
        config = make_integration_config(filter_clause="bad_column = 1")
        error = SourceQueryError("源查询执行失败: Unknown column", query="SELECT 1", detail="错误码: 1054")
        engine = self._engine(config, FakeSourceReader(error=error))

        with self.assertRaises(SourceQueryError):
            await engine.execute(config.id)

        history = await self._history(config.id)
        bucket = history[0].errors[0]
        self.assertEqual(bucket.type, ErrorType.SYSTEM)
        self.assertTrue(bucket.examples[0].startswith("Query: "))
        self.assertIn("bad_column = 1", bucket.examples[1])

    async def test_unexpected_source_error_wrapped(self):
        """测试源读取的未知异常包装为 SourceQueryError"""
        config = make_integration_config()
        engine = self._engine(config, FakeSourceReader(error=RuntimeError("driver crashed")))

        with self.assertRaises(SourceQueryError) as ctx:
            await engine.execute(config.id)

        self.assertEqual(ctx.exception.query, "SELECT * FROM `projects_view`")

    async def test_source_connection_failure(self):
        """测试源库无法连接"""
        config = make_integration_config()
        engine = self._engine(config, FakeSourceReader(error=SourceConnectionError("无法连接数据源")))

        with self.assertRaises(SourceConnectionError):
            await engine.execute(config.id)

        history = await self._history(config.id)
        self.assertEqual(history[0].message, "无法连接数据源")

    async def test_concurrent_run_rejected(self):
        """测试同一配置并发运行被拒绝"""
        config = make_integration_config()
        gate = asyncio.Event()

        class SlowSource(FakeSourceReader):
            async def fetch_rows(self, query):
                await gate.wait()
                return await super().fetch_rows(query)

        engine = self._engine(config, SlowSource(get_sample_project_rows()))

        first = asyncio.create_task(engine.execute(config.id))
        await asyncio.sleep(0)
        self.assertTrue(engine.is_running(config.id))
        with self.assertRaises(ExecutionInProgressError):
            await engine.execute(config.id)

        gate.set()
        result = await first
        self.assertEqual(result.inserted, 3)
        self.assertFalse(engine.is_running(config.id))


class TestErrorAggregation(EngineTestCase):
    """错误聚合测试"""

    async def test_ten_identical_failures(self):
        """测试 10 行相同错误合并为一个分组"""
        config = make_integration_config("teams", mappings=[
            {"source_field": "team_name", "target_field": "name"},
            {"source_field": "code", "target_field": "code"},
        ], source_key_field="code", target_key_field="code")
        rows = [{"team_name": None, "code": f"T{i}"} for i in range(10)]
        rows.append({"team_name": "Ops", "code": "T99"})
        engine = self._engine(config, FakeSourceReader(rows))

        result = await engine.execute(config.id)

        self.assertEqual(result.status, ExecutionStatus.PARTIAL)
        self.assertEqual((result.inserted, result.failed, result.total), (1, 10, 11))
        log = (await self._history(config.id))[0]
        self.assertEqual(len(log.errors), 1)
        self.assertEqual(log.errors[0].count, 10)
        self.assertEqual(len(log.errors[0].examples), 3)
        self.assertEqual(log.message, f"{log.errors[0].message} (10 次)")

    async def test_blank_source_key_counted(self):
        """测试源键为空的行计为校验失败"""
        config = make_integration_config("teams")
        engine = self._engine(config, FakeSourceReader([{"team_name": ""}, {"team_name": "Dev"}]))

        result = await engine.execute(config.id)

        self.assertEqual((result.inserted, result.failed, result.total), (1, 1, 2))
        log = (await self._history(config.id))[0]
        self.assertEqual(log.errors[0].type, ErrorType.VALIDATION)


class TestFilterDiagnostics(EngineTestCase):
    """过滤条件诊断测试"""

    async def test_filter_not_effective_note(self):
        """测试过滤后行数与总行数相同时给出提示"""
        config = make_integration_config(filter_clause="created_at >= 2025-01-01")
        engine = self._engine(config, FakeSourceReader(get_sample_project_rows()))

        result = await engine.execute(config.id)

        self.assertEqual(result.status, ExecutionStatus.SUCCESS)
        log = (await self._history(config.id))[0]
        self.assertIn("过滤条件可能未生效", log.message)

    async def test_filter_effective(self):
        """测试过滤生效时不提示"""
        config = make_integration_config(filter_clause="customer = '华北电力'")
        source = FakeSourceReader(get_sample_project_rows()[:1], unfiltered_count=3)
        engine = self._engine(config, source)

        await engine.execute(config.id)

        log = (await self._history(config.id))[0]
        self.assertNotIn("过滤条件可能未生效", log.message)
        self.assertEqual(source.queries, ["SELECT * FROM `projects_view` WHERE customer = '华北电力'"])


if __name__ == "__main__":
    unittest.main()

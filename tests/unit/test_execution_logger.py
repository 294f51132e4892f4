"""
执行记录器单元测试 (unittest)
"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest import IsolatedAsyncioTestCase

from integration_sync.core.error_classifier import ErrorClassifier
from integration_sync.core.errors import RequiredFieldError, SourceQueryError, UnsafeFilterError
from integration_sync.core.execution_logger import (
    ExecutionLogger,
    build_message,
    determine_status,
)
from integration_sync.models.execution import ErrorType, ExecutionStatus
from integration_sync.stores.memory import InMemoryConfigurationStore

from conftest import make_integration_config


class TestStatusAndMessage(unittest.TestCase):
    """状态与摘要测试"""

    def test_determine_status(self):
        """测试状态规则"""
        self.assertEqual(determine_status(0, 0, 0), ExecutionStatus.SUCCESS)
        self.assertEqual(determine_status(3, 2, 0), ExecutionStatus.SUCCESS)
        self.assertEqual(determine_status(1, 0, 4), ExecutionStatus.PARTIAL)
        self.assertEqual(determine_status(0, 1, 4), ExecutionStatus.PARTIAL)
        self.assertEqual(determine_status(0, 0, 4), ExecutionStatus.ERROR)

    def test_message_success(self):
        """测试成功摘要"""
        message = build_message(ExecutionStatus.SUCCESS, 2, 3, 0, [])
        self.assertIn("新增 2", message)
        self.assertIn("更新 3", message)

    def test_message_note_on_clean_run(self):
        """测试无失败时诊断信息优先"""
        message = build_message(ExecutionStatus.SUCCESS, 2, 0, 0, [], note="过滤条件可能未生效")
        self.assertEqual(message, "过滤条件可能未生效")

    def test_message_single_bucket(self):
        """测试单个错误分组"""
        classifier = ErrorClassifier()
        for _ in range(4):
            classifier.record(RequiredFieldError("缺少 name"))
        message = build_message(ExecutionStatus.ERROR, 0, 0, 4, classifier.buckets(), note="忽略")
        self.assertEqual(message, "缺少 name (4 次)")

    def test_message_multiple_buckets(self):
        """测试多个错误分组"""
        classifier = ErrorClassifier()
        classifier.record(RequiredFieldError("缺少 name"))
        classifier.record(RequiredFieldError("缺少 email"))
        classifier.record(RequiredFieldError("缺少 email"))
        message = build_message(ExecutionStatus.PARTIAL, 1, 0, 3, classifier.buckets())
        self.assertEqual(message, "发现 2 类错误（共 3 条失败）")


class TestBuildLogs(unittest.TestCase):
    """执行记录生成测试"""

    def setUp(self):
        self.logger = ExecutionLogger(InMemoryConfigurationStore())
        self.started = datetime.now(timezone.utc) - timedelta(seconds=5)

    def test_build_log(self):
        """测试运行结束记录"""
        classifier = ErrorClassifier()
        classifier.record(RequiredFieldError("缺少 name"), "第 1 行")

        log = self.logger.build_log(
            started_at=self.started,
            inserted=2,
            updated=1,
            failed=1,
            total_records=4,
            classifier=classifier,
        )

        self.assertEqual(log.status, ExecutionStatus.PARTIAL)
        self.assertEqual(log.total_records, 4)
        self.assertEqual(len(log.errors), 1)
        self.assertGreaterEqual(log.finished_at, log.started_at)

    def test_failure_log_for_query_error(self):
        """测试源查询失败记录包含查询和过滤条件"""
        config = make_integration_config(filter_clause="status = 'open'")
        error = SourceQueryError("源查询执行失败", query="SELECT * FROM `x`", detail="错误码: 1064")

        log = self.logger.build_failure_log(self.started, error, config)

        self.assertEqual(log.status, ExecutionStatus.ERROR)
        self.assertEqual(log.failed, 1)
        self.assertEqual(len(log.errors), 1)
        bucket = log.errors[0]
        self.assertEqual(bucket.type, ErrorType.SYSTEM)
        self.assertEqual(bucket.examples[0], "Query: SELECT * FROM `x`")
        self.assertIn("status = 'open'", bucket.examples[1])
        self.assertEqual(bucket.examples[2], "错误码: 1064")

    def test_failure_log_for_unsafe_filter(self):
        """测试不安全过滤条件记录"""
        config = make_integration_config()
        error = UnsafeFilterError("过滤条件包含禁止的命令", detail="x; DROP TABLE t")

        log = self.logger.build_failure_log(self.started, error, config)

        self.assertEqual(log.inserted, 0)
        self.assertEqual(log.updated, 0)
        self.assertEqual(log.errors[0].examples, ["x; DROP TABLE t"])

    def test_failure_log_keeps_counts(self):
        """测试运行中途失败保留已处理计数"""
        config = make_integration_config()
        log = self.logger.build_failure_log(
            self.started, RuntimeError("boom"), config,
            inserted=3, updated=2, failed=4, total_records=10
        )
        self.assertEqual((log.inserted, log.updated, log.failed), (3, 2, 4))
        self.assertEqual(log.errors[0].examples, ["RuntimeError: boom"])


class TestConsistency(unittest.TestCase):
    """数量一致性检查测试"""

    def setUp(self):
        self.logger = ExecutionLogger(InMemoryConfigurationStore())

    def test_consistent(self):
        """测试一致"""
        self.assertTrue(self.logger.check_consistency(5, 7, inserted=2, updated=5))

    def test_updates_on_empty_collection(self):
        """测试空集合出现更新"""
        self.assertFalse(self.logger.check_consistency(0, 0, inserted=0, updated=1))

    def test_count_mismatch(self):
        """测试数量不一致"""
        self.assertFalse(self.logger.check_consistency(5, 6, inserted=2, updated=0))


class TestRecord(IsolatedAsyncioTestCase):
    """执行历史写入测试"""

    async def test_record_reloads_fresh_config(self):
        """测试写入前重新读取配置"""
        config = make_integration_config()
        store = InMemoryConfigurationStore([config])
        logger = ExecutionLogger(store)

        edited = await store.get(config.id)
        edited.description = "运行期间修改"
        await store.save(edited)

        log = logger.build_log(
            started_at=datetime.now(timezone.utc),
            inserted=1, updated=0, failed=0, total_records=1,
            classifier=ErrorClassifier(),
        )
        await logger.record(config, log)

        saved = await store.get(config.id)
        self.assertEqual(saved.description, "运行期间修改")
        self.assertEqual(len(saved.history), 1)

    async def test_record_bounded(self):
        """测试历史最多 5 条"""
        config = make_integration_config()
        store = InMemoryConfigurationStore([config])
        logger = ExecutionLogger(store)

        for _ in range(7):
            log = logger.build_log(
                started_at=datetime.now(timezone.utc),
                inserted=0, updated=1, failed=0, total_records=1,
                classifier=ErrorClassifier(),
            )
            await logger.record(config, log)

        saved = await store.get(config.id)
        self.assertEqual(len(saved.history), 5)


if __name__ == "__main__":
    unittest.main()

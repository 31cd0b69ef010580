# A/Bテストのリポジトリ テスト
"""
InMemoryExperimentRepository / PostgresExperimentRepository の単体テスト

PostgreSQL はモックカーソルで置き換え、発行する SQL とパラメータ、
読み込んだ行からの復元を検証する。
"""

import json
from unittest.mock import MagicMock

import pytest

from src.ab_testing.models import (
    ABTestConfig,
    ABTestResult,
    ABTestStatus,
    Variant,
    VariantConfig,
)
from src.ab_testing.repository import (
    InMemoryExperimentRepository,
    PostgresExperimentRepository,
)
from src.models.metrics import MetricActual, MetricPrediction
from src.models.routing import Provider


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def config():
    return ABTestConfig(
        id="repo-test",
        name="repository",
        variant_a=VariantConfig(Provider.OPENAI, "gpt-4o-mini"),
        variant_b=VariantConfig(Provider.GOOGLE, "gemini-1.5-flash"),
        status=ABTestStatus.RUNNING,
        start_time=100.0,
    )


@pytest.fixture
def result():
    return ABTestResult.build(
        test_id="repo-test",
        variant=Variant.A,
        user_id="user-1",
        request_id="req-1",
        timestamp=150.0,
        prediction=MetricPrediction(cost=0.001, response_time=1000.0, quality=0.9),
        actual=MetricActual(cost=0.0012, response_time=900.0, quality=0.88),
    )


@pytest.fixture
def mock_cursor():
    """モックカーソル"""
    cursor = MagicMock()
    cursor.__enter__ = MagicMock(return_value=cursor)
    cursor.__exit__ = MagicMock(return_value=None)
    return cursor


@pytest.fixture
def mock_db(mock_cursor):
    """モックDB接続"""
    db = MagicMock()
    db.get_cursor = MagicMock(return_value=mock_cursor)
    return db


@pytest.fixture
def repository(mock_db):
    return PostgresExperimentRepository(mock_db)


# ============================================================================
# InMemoryExperimentRepository
# ============================================================================


class TestInMemoryRepository:
    """インメモリリポジトリのテスト"""

    def test_save_and_load(self, config, result):
        repo = InMemoryExperimentRepository()
        repo.save_config(config)
        repo.append_result(result)
        repo.save_assignment("repo-test", "user-1", Variant.A)
        repo.save_assignment("repo-test", "user-2", None)

        [stored] = repo.load_all()

        assert stored.config == config
        assert stored.results == [result]
        assert stored.assignments == {"user-1": Variant.A, "user-2": None}

    def test_save_config_overwrites(self, config):
        repo = InMemoryExperimentRepository()
        repo.save_config(config)
        repo.save_config(config.with_status(ABTestStatus.PAUSED))

        [stored] = repo.load_all()

        assert stored.config.status == ABTestStatus.PAUSED

    def test_load_all_returns_copies(self, config, result):
        """読み込んだデータを変更してもリポジトリに影響しない"""
        repo = InMemoryExperimentRepository()
        repo.save_config(config)
        repo.load_all()[0].results.append(result)

        assert repo.load_all()[0].results == []


# ============================================================================
# PostgresExperimentRepository
# ============================================================================


class TestPostgresSave:
    """書き込み系のテスト"""

    def test_save_config_upserts(self, repository, mock_cursor, config):
        repository.save_config(config)

        sql, params = mock_cursor.execute.call_args[0]
        assert "INSERT INTO ab_tests" in sql
        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert params[:3] == ("repo-test", "repository", "running")
        assert json.loads(params[3])["variant_b"]["model"] == "gemini-1.5-flash"

    def test_append_result(self, repository, mock_cursor, result):
        repository.append_result(result)

        sql, params = mock_cursor.execute.call_args[0]
        assert "INSERT INTO ab_test_results" in sql
        assert params[:5] == ("repo-test", "A", "user-1", "req-1", 150.0)
        assert json.loads(params[5])["actual_cost"] == 0.0012

    def test_save_assignment_ignores_conflict(self, repository, mock_cursor):
        """既存の割り当ては上書きしない"""
        repository.save_assignment("repo-test", "user-1", Variant.B)

        sql, params = mock_cursor.execute.call_args[0]
        assert "ON CONFLICT (test_id, user_id) DO NOTHING" in sql
        assert params == ("repo-test", "user-1", "B")

    def test_save_exclusion(self, repository, mock_cursor):
        """対象外は variant を NULL で保存"""
        repository.save_assignment("repo-test", "user-1", None)

        assert mock_cursor.execute.call_args[0][1] == ("repo-test", "user-1", None)


class TestPostgresLoad:
    """load_all のテスト"""

    def test_load_all(self, repository, mock_cursor, config, result):
        """JSONB（dict）と TEXT（str）どちらの行も復元できる"""
        mock_cursor.fetchall.side_effect = [
            [(config.to_dict(),)],
            [(json.dumps(result.to_dict()),)],
            [("repo-test", "user-1", "A"), ("repo-test", "user-2", None)],
        ]

        [stored] = repository.load_all()

        assert stored.config == ABTestConfig.from_dict(config.to_dict())
        assert len(stored.results) == 1
        assert stored.results[0].request_id == "req-1"
        assert stored.assignments == {"user-1": Variant.A, "user-2": None}
        assert mock_cursor.execute.call_count == 3

    def test_orphan_rows_skipped(self, repository, mock_cursor, result):
        """設定のない結果・割り当ては読み飛ばす"""
        mock_cursor.fetchall.side_effect = [
            [],
            [(result.to_dict(),)],
            [("repo-test", "user-1", "A")],
        ]

        assert repository.load_all() == []

    def test_empty_database(self, repository, mock_cursor):
        mock_cursor.fetchall.side_effect = [[], [], []]

        assert repository.load_all() == []

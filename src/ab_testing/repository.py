# A/Bテストの永続化
"""
A/Bテストのリポジトリ

ExperimentStore の書き込みをそのまま反映するライトスルー先。
プロセス再起動時は load_all() で状態を復元する。

- InMemoryExperimentRepository: 単一プロセス用（デフォルト）
- PostgresExperimentRepository: psycopg2 経由で PostgreSQL に保存
  テーブル定義: scripts/ab_testing_schema.sql
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from src.ab_testing.models import ABTestConfig, ABTestResult, Variant
from src.db.connection import DatabaseConnection

logger = logging.getLogger(__name__)


@dataclass
class StoredExperiment:
    """復元用のテスト1件分のデータ"""

    config: ABTestConfig
    results: List[ABTestResult] = field(default_factory=list)
    assignments: Dict[str, Optional[Variant]] = field(default_factory=dict)


class ExperimentRepository(ABC):
    """A/Bテストの永続化インターフェース"""

    @abstractmethod
    def save_config(self, config: ABTestConfig) -> None:
        """設定を保存（同じIDは上書き）"""

    @abstractmethod
    def append_result(self, result: ABTestResult) -> None:
        """結果を追記"""

    @abstractmethod
    def save_assignment(self, test_id: str, user_id: str, variant: Optional[Variant]) -> None:
        """割り当てを保存（None はトラフィック対象外）"""

    @abstractmethod
    def load_all(self) -> List[StoredExperiment]:
        """全テストを読み込む"""


class InMemoryExperimentRepository(ExperimentRepository):
    """インメモリのリポジトリ"""

    def __init__(self):
        self._experiments: Dict[str, StoredExperiment] = {}
        self._lock = threading.Lock()

    def save_config(self, config: ABTestConfig) -> None:
        with self._lock:
            stored = self._experiments.get(config.id)
            if stored is None:
                self._experiments[config.id] = StoredExperiment(config=config)
            else:
                stored.config = config

    def append_result(self, result: ABTestResult) -> None:
        with self._lock:
            self._experiments[result.test_id].results.append(result)

    def save_assignment(self, test_id: str, user_id: str, variant: Optional[Variant]) -> None:
        with self._lock:
            self._experiments[test_id].assignments[user_id] = variant

    def load_all(self) -> List[StoredExperiment]:
        with self._lock:
            return [
                StoredExperiment(
                    config=stored.config,
                    results=list(stored.results),
                    assignments=dict(stored.assignments),
                )
                for stored in self._experiments.values()
            ]


def _load_json(value):
    """JSONB は psycopg2 が dict に変換済み、TEXT の場合は文字列"""
    if value is None or isinstance(value, (dict, list)):
        return value
    return json.loads(value)


class PostgresExperimentRepository(ExperimentRepository):
    """PostgreSQL のリポジトリ

    使用例:
        repository = PostgresExperimentRepository(DatabaseConnection())
        store = ExperimentStore(repository=repository)
        store.restore()
    """

    def __init__(self, db_connection: DatabaseConnection):
        self.db = db_connection

    def save_config(self, config: ABTestConfig) -> None:
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO ab_tests (id, name, status, config)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE
                SET name = EXCLUDED.name,
                    status = EXCLUDED.status,
                    config = EXCLUDED.config,
                    updated_at = NOW()
                """,
                (config.id, config.name, config.status.value, json.dumps(config.to_dict())),
            )

    def append_result(self, result: ABTestResult) -> None:
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO ab_test_results
                (test_id, variant, user_id, request_id, recorded_at, payload)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    result.test_id,
                    result.variant.value,
                    result.user_id,
                    result.request_id,
                    result.timestamp,
                    json.dumps(result.to_dict()),
                ),
            )

    def save_assignment(self, test_id: str, user_id: str, variant: Optional[Variant]) -> None:
        with self.db.get_cursor() as cur:
            cur.execute(
                """
                INSERT INTO ab_test_assignments (test_id, user_id, variant)
                VALUES (%s, %s, %s)
                ON CONFLICT (test_id, user_id) DO NOTHING
                """,
                (test_id, user_id, variant.value if variant else None),
            )

    def load_all(self) -> List[StoredExperiment]:
        with self.db.get_cursor() as cur:
            cur.execute("SELECT config FROM ab_tests ORDER BY created_at")
            config_rows = cur.fetchall()
            cur.execute("SELECT payload FROM ab_test_results ORDER BY id")
            result_rows = cur.fetchall()
            cur.execute("SELECT test_id, user_id, variant FROM ab_test_assignments")
            assignment_rows = cur.fetchall()

        experiments: Dict[str, StoredExperiment] = {}
        for (config_json,) in config_rows:
            config = ABTestConfig.from_dict(_load_json(config_json))
            experiments[config.id] = StoredExperiment(config=config)

        for (payload,) in result_rows:
            result = ABTestResult.from_dict(_load_json(payload))
            stored = experiments.get(result.test_id)
            if stored is None:
                logger.warning(f"設定のない結果をスキップ: test_id={result.test_id}")
                continue
            stored.results.append(result)

        for test_id, user_id, variant in assignment_rows:
            stored = experiments.get(test_id)
            if stored is not None:
                stored.assignments[user_id] = Variant(variant) if variant else None

        logger.info(
            f"A/Bテストを読み込み: tests={len(experiments)}, results={len(result_rows)}"
        )
        return list(experiments.values())

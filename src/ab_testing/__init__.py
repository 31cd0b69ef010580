# A/B Testing Module
"""
A/Bテストモジュール

ルーティングのバリアント（プロバイダー + モデル）を比較する実験を管理する。

- ライフサイクル: draft → running → paused / completed / stopped
- (test_id, user_id) の SHA-256 ハッシュによる決定論的な割り当て
- Welch の t検定（scipy.stats）による有意性判定と自動停止
"""

from src.ab_testing.assignment import VariantAssigner, stable_hash
from src.ab_testing.errors import (
    ABTestError,
    DuplicateTest,
    InsufficientData,
    InvalidStateTransition,
    InvalidTestConfig,
    TestNotFound,
    TestNotRunning,
)
from src.ab_testing.experiment_store import ExperimentStore
from src.ab_testing.framework import ABTestingFramework
from src.ab_testing.models import (
    ABTestAnalysis,
    ABTestConfig,
    ABTestResult,
    ABTestStatus,
    AnalysisStatus,
    AutoStopPolicy,
    MetricName,
    Recommendation,
    Variant,
    VariantConfig,
)
from src.ab_testing.repository import (
    ExperimentRepository,
    InMemoryExperimentRepository,
    PostgresExperimentRepository,
)
from src.ab_testing.statistics import StatisticalAnalyzer

__all__ = [
    "ABTestingFramework",
    "ExperimentStore",
    "StatisticalAnalyzer",
    "VariantAssigner",
    "stable_hash",
    "ExperimentRepository",
    "InMemoryExperimentRepository",
    "PostgresExperimentRepository",
    "ABTestAnalysis",
    "ABTestConfig",
    "ABTestResult",
    "ABTestStatus",
    "AnalysisStatus",
    "AutoStopPolicy",
    "MetricName",
    "Recommendation",
    "Variant",
    "VariantConfig",
    "ABTestError",
    "DuplicateTest",
    "InsufficientData",
    "InvalidStateTransition",
    "InvalidTestConfig",
    "TestNotFound",
    "TestNotRunning",
]

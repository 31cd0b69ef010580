# src/scheduling/__init__.py
"""スケジューリングモジュール

A/Bテストの定期分析をリクエスト処理と独立に実行する。
"""

from src.scheduling.analysis_scheduler import PeriodicAnalysisScheduler

__all__ = [
    "PeriodicAnalysisScheduler",
]

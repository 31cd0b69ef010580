# A/Bテストの統計分析
"""
統計分析モジュール

結果集合とテスト設定から ABTestAnalysis を計算する純粋関数群。

検定:
    Welch の t検定（不等分散）。自由度は Welch–Satterthwaite 近似、
    p値は scipy.stats.t.sf による Student-t 分布の両側確率。
    正規近似は使わないため小標本（n<30）でも p値が過小にならない。
    残る誤差は自由度の近似のみで、分散比が極端でない限り p値の相対誤差は数%以内。

信頼区間:
    相対効果量 ± z(1-α/2) * SE / |meanA|（正規近似）
    n<30 では t分布より裾が軽いため、名目の被覆率を下回る（狭くなる）。

効果量の向き:
    cost / responseTime は小さいほど良い、quality / accuracy / userSatisfaction は
    大きいほど良い。効果量は常に「正 = B が A より良い」に揃える。
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from scipy import stats

from src.ab_testing.errors import InsufficientData
from src.ab_testing.models import (
    ABTestAnalysis,
    ABTestConfig,
    ABTestResult,
    AnalysisStatus,
    MetricName,
    MetricSummary,
    PrimaryMetricResult,
    Recommendation,
    SecondaryMetricResult,
    Variant,
)

logger = logging.getLogger(__name__)

LOWER_IS_BETTER = frozenset({MetricName.COST, MetricName.RESPONSE_TIME})
HIGHER_IS_BETTER = frozenset({
    MetricName.QUALITY,
    MetricName.ACCURACY,
    MetricName.USER_SATISFACTION,
})

# 必要サンプル数の見積もりに使う検出力
TARGET_POWER = 0.8


@dataclass(frozen=True)
class WelchTestResult:
    """Welch の t検定の結果（t は B - A の向き）"""

    t_statistic: float
    degrees_of_freedom: float
    p_value: float


def is_lower_better(metric: MetricName) -> bool:
    return metric in LOWER_IS_BETTER


def metric_values(
    results: Sequence[ABTestResult],
    metric: MetricName,
    variant: Variant,
) -> List[float]:
    """バリアントのメトリクス値を抽出（値を持たない結果は除く）"""
    values = []
    for result in results:
        if result.variant != variant:
            continue
        value = result.metric_value(metric)
        if value is not None:
            values.append(float(value))
    return values


def summarize(values: Sequence[float]) -> MetricSummary:
    """平均と標本標準偏差（n-1）。2件未満の標準偏差は0"""
    n = len(values)
    if n == 0:
        return MetricSummary(mean=0.0, std=0.0, samples=0)
    mean = math.fsum(values) / n
    if n < 2:
        return MetricSummary(mean=mean, std=0.0, samples=n)
    variance = math.fsum((x - mean) ** 2 for x in values) / (n - 1)
    return MetricSummary(mean=mean, std=math.sqrt(variance), samples=n)


def welch_t_test(a: MetricSummary, b: MetricSummary) -> WelchTestResult:
    """Welch の t検定

    どちらかが2件未満なら検定できないため p=1.0 を返す。
    両群とも分散0の場合は平均が等しければ p=1.0、異なれば p=0.0。
    """
    if a.samples < 2 or b.samples < 2:
        return WelchTestResult(t_statistic=0.0, degrees_of_freedom=0.0, p_value=1.0)

    var_a = a.std ** 2 / a.samples
    var_b = b.std ** 2 / b.samples
    se_squared = var_a + var_b
    difference = b.mean - a.mean

    if se_squared == 0.0:
        df = float(a.samples + b.samples - 2)
        if difference == 0.0:
            return WelchTestResult(t_statistic=0.0, degrees_of_freedom=df, p_value=1.0)
        return WelchTestResult(
            t_statistic=math.copysign(math.inf, difference),
            degrees_of_freedom=df,
            p_value=0.0,
        )

    t_statistic = difference / math.sqrt(se_squared)
    df = se_squared ** 2 / (
        var_a ** 2 / (a.samples - 1) + var_b ** 2 / (b.samples - 1)
    )
    p_value = float(2.0 * stats.t.sf(abs(t_statistic), df))
    return WelchTestResult(
        t_statistic=float(t_statistic),
        degrees_of_freedom=float(df),
        p_value=min(1.0, p_value),
    )


def oriented_difference(metric: MetricName, a: MetricSummary, b: MetricSummary) -> float:
    """正なら B が良い向きの平均差"""
    if is_lower_better(metric):
        return a.mean - b.mean
    return b.mean - a.mean


def relative_effect(metric: MetricName, a: MetricSummary, b: MetricSummary) -> float:
    """A に対する B の相対改善（正 = B が良い）。meanA が0なら0"""
    if a.mean == 0.0:
        return 0.0
    return oriented_difference(metric, a, b) / abs(a.mean)


def confidence_interval(
    effect: float,
    a: MetricSummary,
    b: MetricSummary,
    significance_level: float,
) -> Tuple[float, float]:
    """相対効果量の信頼区間（正規近似）"""
    if a.mean == 0.0 or a.samples == 0 or b.samples == 0:
        return (effect, effect)
    se = math.sqrt(a.std ** 2 / a.samples + b.std ** 2 / b.samples)
    z = float(stats.norm.ppf(1.0 - significance_level / 2.0))
    margin = z * se / abs(a.mean)
    return (effect - margin, effect + margin)


def projected_sample_size(
    config: ABTestConfig,
    a: MetricSummary,
    b: MetricSummary,
) -> Optional[int]:
    """minimum_detectable_effect を検出力80%で検出するための
    バリアントあたりのサンプル数（2標本の正規近似）"""
    if config.minimum_detectable_effect <= 0 or a.mean == 0.0:
        return None
    if a.samples < 2 and b.samples < 2:
        return None
    variance = (a.std ** 2 + b.std ** 2) / 2.0
    z_alpha = float(stats.norm.ppf(1.0 - config.significance_level / 2.0))
    z_power = float(stats.norm.ppf(TARGET_POWER))
    detectable = config.minimum_detectable_effect * abs(a.mean)
    needed = 2.0 * (z_alpha + z_power) ** 2 * variance / detectable ** 2
    return max(2, math.ceil(needed))


def required_samples(config: ABTestConfig) -> int:
    """有意性を判定するためのバリアントあたりの最小サンプル数"""
    return max(config.min_sample_size, 2)


class StatisticalAnalyzer:
    """A/Bテストの統計分析

    使用例:
        analyzer = StatisticalAnalyzer()
        analysis = analyzer.analyze(config, results, now=time.time())
        if analysis and analysis.is_significant:
            print(analysis.recommendation)
    """

    def analyze(
        self,
        config: ABTestConfig,
        results: Sequence[ABTestResult],
        now: float,
    ) -> Optional[ABTestAnalysis]:
        """結果集合を分析

        Args:
            config: テスト設定
            results: 結果のスナップショット
            now: 経過時間の判定に使う現在時刻（UNIX時刻）

        Returns:
            ABTestAnalysis。結果が1件もない場合は None
        """
        if not results:
            return None

        metric = config.primary_metric
        summary_a = summarize(metric_values(results, metric, Variant.A))
        summary_b = summarize(metric_values(results, metric, Variant.B))

        welch = welch_t_test(summary_a, summary_b)
        needed = required_samples(config)
        has_enough = summary_a.samples >= needed and summary_b.samples >= needed
        is_significant = has_enough and welch.p_value < config.significance_level

        effect = relative_effect(metric, summary_a, summary_b)
        primary = PrimaryMetricResult(
            metric=metric,
            variant_a=summary_a,
            variant_b=summary_b,
            improvement=effect * 100.0,
            confidence_interval=confidence_interval(
                effect, summary_a, summary_b, config.significance_level
            ),
        )

        status, recommendation, reason = self._recommend(
            config, summary_a, summary_b, has_enough, is_significant, welch, now
        )
        logger.debug(
            f"分析: test_id={config.id}, n=({summary_a.samples}, {summary_b.samples}), "
            f"p={welch.p_value:.4g}, status={status.value}"
        )

        return ABTestAnalysis(
            test_id=config.id,
            status=status,
            primary_metric=metric,
            sample_sizes=(summary_a.samples, summary_b.samples),
            means=(summary_a.mean, summary_b.mean),
            standard_deviations=(summary_a.std, summary_b.std),
            effect=effect,
            mean_difference=summary_b.mean - summary_a.mean,
            t_statistic=welch.t_statistic,
            degrees_of_freedom=welch.degrees_of_freedom,
            p_value=welch.p_value,
            confidence=1.0 - welch.p_value,
            is_significant=is_significant,
            primary_metric_results=primary,
            secondary_metric_results=self._analyze_secondary(config, results),
            recommendation=recommendation,
            recommendation_reason=reason,
            projected_sample_size_needed=projected_sample_size(config, summary_a, summary_b),
        )

    # ===== Private Methods =====

    def _analyze_secondary(
        self,
        config: ABTestConfig,
        results: Sequence[ABTestResult],
    ) -> Dict[str, SecondaryMetricResult]:
        """副次メトリクスを主要メトリクスと同じ α で個別に検定"""
        secondary: Dict[str, SecondaryMetricResult] = {}
        needed = required_samples(config)
        for metric in config.secondary_metrics:
            summary_a = summarize(metric_values(results, metric, Variant.A))
            summary_b = summarize(metric_values(results, metric, Variant.B))
            welch = welch_t_test(summary_a, summary_b)
            secondary[metric.value] = SecondaryMetricResult(
                variant_a=summary_a,
                variant_b=summary_b,
                improvement=relative_effect(metric, summary_a, summary_b) * 100.0,
                p_value=welch.p_value,
                is_significant=(
                    summary_a.samples >= needed
                    and summary_b.samples >= needed
                    and welch.p_value < config.significance_level
                ),
            )
        return secondary

    def _recommend(
        self,
        config: ABTestConfig,
        a: MetricSummary,
        b: MetricSummary,
        has_enough: bool,
        is_significant: bool,
        welch: WelchTestResult,
        now: float,
    ) -> Tuple[AnalysisStatus, Recommendation, str]:
        """推奨アクションを判定（評価順は固定）"""
        if not has_enough:
            needed = required_samples(config)
            return (
                AnalysisStatus.INSUFFICIENT_DATA,
                Recommendation.CONTINUE_TEST,
                f"Insufficient samples: variant A has {a.samples}, variant B has {b.samples}, "
                f"need at least {needed} per variant",
            )

        if is_significant:
            if oriented_difference(config.primary_metric, a, b) > 0:
                return (
                    AnalysisStatus.VARIANT_B_WINS,
                    Recommendation.CHOOSE_VARIANT_B,
                    f"Variant B is significantly better on {config.primary_metric.value} "
                    f"(p={welch.p_value:.4g} < {config.significance_level})",
                )
            return (
                AnalysisStatus.VARIANT_A_WINS,
                Recommendation.CHOOSE_VARIANT_A,
                f"Variant A is significantly better on {config.primary_metric.value} "
                f"(p={welch.p_value:.4g} < {config.significance_level})",
            )

        elapsed = now - config.start_time if config.start_time is not None else 0.0
        if elapsed > config.max_duration_seconds:
            return (
                AnalysisStatus.INCONCLUSIVE,
                Recommendation.STOP_TEST,
                f"Maximum duration exceeded without a significant difference "
                f"(p={welch.p_value:.4g}), no clear winner",
            )

        if config.is_terminal:
            return (
                AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE,
                Recommendation.NO_CLEAR_WINNER,
                f"Test ended without a significant difference (p={welch.p_value:.4g})",
            )

        return (
            AnalysisStatus.NO_SIGNIFICANT_DIFFERENCE,
            Recommendation.CONTINUE_TEST,
            f"p-value {welch.p_value:.4g} has not reached significance level "
            f"{config.significance_level}, no clear winner yet",
        )


def require_samples(analysis: Optional[ABTestAnalysis]) -> ABTestAnalysis:
    """有意性判定に足るサンプルがなければ InsufficientData を送出

    Raises:
        InsufficientData: 分析がない、またはサンプル不足の場合
    """
    if analysis is None:
        raise InsufficientData("No results recorded")
    if analysis.status == AnalysisStatus.INSUFFICIENT_DATA:
        raise InsufficientData(analysis.recommendation_reason)
    return analysis

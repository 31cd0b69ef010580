"""
A/Bテストコマンド実装
"""

from __future__ import annotations

import random
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import click

from src.ab_testing.errors import ABTestError
from src.ab_testing.framework import ABTestingFramework
from src.ab_testing.models import ABTestAnalysis, ABTestConfig, ABTestResult, Variant
from src.cli.utils.output import echo_error, echo_json, echo_table
from src.cli.utils.yaml_loader import YamlValidationError, load_yaml, validate_ab_test_config
from src.models.metrics import MetricActual, MetricPrediction
from src.models.routing import ChatMessage, RoutingRequest
from src.routing.engine import RoutingEngine

SIMULATED_REQUEST = RoutingRequest(messages=(ChatMessage("user", "Simulated request"),))


@dataclass
class SimulationOutcome:
    """シミュレーション結果"""

    config: ABTestConfig
    analysis: Optional[ABTestAnalysis]
    assignments: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test": self.config.to_dict(),
            "assignments": dict(self.assignments),
            "analysis": self.analysis.to_dict() if self.analysis else None,
        }


def run_simulation(
    config: ABTestConfig,
    engine: RoutingEngine,
    users: int,
    seed: int,
    noise: float = 0.05,
    profiles: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> SimulationOutcome:
    """インメモリの A/Bテストに合成データを流して分析する

    profiles が指定されたバリアントはその平均値、なければエンジンの
    ベースライン推定を真の平均として、相対標準偏差 noise の正規乱数で実測値を作る。
    """
    rng = random.Random(seed)
    profiles = profiles or {}
    segments = sorted(config.user_segments) if config.user_segments else None
    request_type = sorted(config.request_types)[0] if config.request_types else None

    with ABTestingFramework(config=engine.config, auto_start_scheduler=False) as framework:
        framework.create_test(config)
        framework.start_test(config.id)

        predictions = {}
        for variant in Variant:
            target = config.variant(variant)
            predictions[variant] = engine.estimate_for(target.provider, target.model, SIMULATED_REQUEST)

        for index in range(users):
            user_id = f"user-{index}"
            variant = framework.assign_variant(config.id, user_id, segments, request_type)
            if variant is None:
                continue

            estimate = predictions[variant]
            profile = profiles.get(f"variant_{variant.value.lower()}") or {}
            actual = MetricActual(
                cost=_sample(rng, profile.get("cost", estimate.estimated_cost), noise),
                response_time=_sample(
                    rng, profile.get("response_time", estimate.estimated_latency), noise
                ),
                quality=min(1.0, _sample(rng, profile.get("quality", estimate.estimated_quality), noise)),
                user_satisfaction=(
                    min(5.0, _sample(rng, profile["user_satisfaction"], noise))
                    if "user_satisfaction" in profile else None
                ),
            )
            framework.record_result(ABTestResult.build(
                test_id=config.id,
                variant=variant,
                user_id=user_id,
                request_id=f"sim-{index}",
                timestamp=time.time(),
                prediction=MetricPrediction(
                    cost=estimate.estimated_cost,
                    response_time=estimate.estimated_latency,
                    quality=estimate.estimated_quality,
                    confidence=estimate.confidence,
                ),
                actual=actual,
                request=SIMULATED_REQUEST,
            ))

        analysis = framework.analyze_test(config.id)
        framework.apply_auto_stop(config.id, analysis)
        counts = framework.store.assignment_counts(config.id)

        return SimulationOutcome(
            config=framework.store.get_test(config.id),
            analysis=analysis,
            assignments={
                "A": counts[Variant.A],
                "B": counts[Variant.B],
                "excluded": counts[None],
            },
        )


def _sample(rng: random.Random, mean: float, noise: float) -> float:
    return max(0.0, rng.gauss(mean, abs(mean) * noise))


def experiment_command(cli_group, pass_context):
    """experiment コマンドグループを追加"""

    @cli_group.group()
    def experiment():
        """A/Bテストを操作する"""

    @experiment.command()
    @click.argument('config_file', type=click.Path(exists=True, dir_okay=False))
    @click.option('--users', default=1000, type=click.IntRange(min=1), help='シミュレーションするユーザー数')
    @click.option('--seed', default=42, type=int, help='乱数シード')
    @click.option('--noise', default=0.05, type=click.FloatRange(min=0.0), help='実測値の相対標準偏差')
    @click.option('--format', 'output_format', type=click.Choice(['summary', 'json']), default='summary', help='出力形式')
    @pass_context
    def simulate(ctx, config_file: str, users: int, seed: int, noise: float, output_format: str):
        """YAML の A/Bテストを合成データでシミュレーションし、分析結果を表示する"""
        try:
            data = load_yaml(config_file)
            validate_ab_test_config(data)
            config = ABTestConfig.from_dict(data)
            config.validate()
        except (YamlValidationError, ValueError) as e:
            echo_error(f"テスト設定が不正です: {e}")
            sys.exit(2)

        try:
            outcome = run_simulation(
                config,
                ctx.engine,
                users=users,
                seed=seed,
                noise=noise,
                profiles=data.get("simulation"),
            )
        except ABTestError as e:
            echo_error(f"シミュレーションに失敗しました: {e}")
            sys.exit(1)

        if output_format == 'json':
            echo_json(outcome.to_dict())
            return

        _echo_summary(outcome)


def _echo_summary(outcome: SimulationOutcome) -> None:
    config = outcome.config
    click.echo(f"テスト: {config.name} ({config.id})")
    click.echo(f"  状態: {config.status.value}")
    if config.stop_reason:
        click.echo(f"  理由: {config.stop_reason}")
    click.echo(
        f"  割り当て: A={outcome.assignments['A']}, B={outcome.assignments['B']}, "
        f"対象外={outcome.assignments['excluded']}"
    )

    analysis = outcome.analysis
    if analysis is None:
        click.echo("\n結果がありません")
        return

    click.echo(f"\n主要メトリクス: {analysis.primary_metric.value}")
    echo_table(
        ["VARIANT", "N", "MEAN", "STD"],
        [
            ["A", analysis.sample_sizes[0], f"{analysis.means[0]:.6g}", f"{analysis.standard_deviations[0]:.4g}"],
            ["B", analysis.sample_sizes[1], f"{analysis.means[1]:.6g}", f"{analysis.standard_deviations[1]:.4g}"],
        ],
    )
    low, high = analysis.primary_metric_results.confidence_interval
    click.echo(f"\n改善率: {analysis.primary_metric_results.improvement:+.2f}% (CI: {low:+.4f} .. {high:+.4f})")
    click.echo(f"p値: {analysis.p_value:.4g} (有意: {'はい' if analysis.is_significant else 'いいえ'})")
    click.echo(f"推奨: {analysis.recommendation.value}")
    click.echo(f"  {analysis.recommendation_reason}")

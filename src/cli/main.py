#!/usr/bin/env python3
"""
ルーティング CLI メインエントリーポイント

ルーティング判断と A/Bテストのシミュレーションを Pythonコードを書かずに試すための CLI。
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import click

from src.cli.commands.experiment import experiment_command
from src.cli.utils.output import echo_error, echo_json, echo_table
from src.cli.utils.yaml_loader import YamlValidationError, load_yaml, validate_routing_request
from src.config.routing_config import TIER_LIMITS, RoutingConfig
from src.models.routing import AuthContext, RoutingRequest
from src.routing.api_keys import ApiKeyResolver, EnvApiKeyResolver, StaticApiKeyResolver
from src.routing.engine import RoutingEngine
from src.routing.errors import RoutingError
from src.routing.provider_catalog import ProviderCatalog

TIER_CHOICES = list(TIER_LIMITS.keys())


class CLIContext:
    """CLI共通コンテキスト（依存関係を保持）"""

    def __init__(self):
        self.config: Optional[RoutingConfig] = None
        self.catalog: Optional[ProviderCatalog] = None
        self.api_key_resolver: Optional[ApiKeyResolver] = None
        self.all_providers = False
        self._engine: Optional[RoutingEngine] = None
        self._initialized = False

    def initialize(self):
        """遅延初期化（必要時に呼び出される）"""
        if self._initialized:
            return

        self.config = RoutingConfig()
        try:
            self.config.validate()
        except ValueError as e:
            echo_error(f"設定が不正です: {e}")
            sys.exit(2)

        self.catalog = ProviderCatalog()
        if self.all_providers:
            self.api_key_resolver = StaticApiKeyResolver.all_providers()
        else:
            self.api_key_resolver = EnvApiKeyResolver()
        self._initialized = True

    @property
    def engine(self) -> RoutingEngine:
        """RoutingEngine を遅延初期化"""
        self.initialize()
        if self._engine is None:
            self._engine = RoutingEngine(
                catalog=self.catalog,
                api_key_resolver=self.api_key_resolver,
                config=self.config,
            )
        return self._engine


# click の pass_context でCLIContextを共有
pass_context = click.make_pass_decorator(CLIContext, ensure=True)


@click.group()
@click.version_option(version="1.0.0", prog_name="routing")
@click.option('--all-providers', is_flag=True, help='APIキーの有無に関係なく全プロバイダーを利用可能とみなす')
@click.option('--verbose', is_flag=True, help='詳細ログを表示')
@pass_context
def cli(ctx: CLIContext, all_providers: bool, verbose: bool):
    """
    ML ルーティング & A/Bテスト CLI

    プロバイダー一覧の確認、ルーティング判断、A/Bテストのシミュレーションを行えます。
    """
    ctx.all_providers = all_providers
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option('--tier', type=click.Choice(TIER_CHOICES, case_sensitive=False), default=None, help='ティアで絞り込む')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table', help='出力形式')
@pass_context
def providers(ctx: CLIContext, tier: Optional[str], output_format: str):
    """プロバイダー/モデルのベースライン性能を表示する"""
    ctx.initialize()
    profiles = ctx.catalog.models_for_tier(tier) if tier else ctx.catalog.all_models()

    rows = [
        {
            "provider": p.provider.value,
            "model": p.model,
            "class": p.model_class,
            "base_cost": p.base_cost,
            "base_latency_ms": p.base_latency_ms,
            "base_quality": p.base_quality,
            "available": ctx.api_key_resolver.is_available(p.provider),
        }
        for p in profiles
    ]

    if output_format == 'json':
        echo_json(rows)
        return

    echo_table(
        ["PROVIDER", "MODEL", "CLASS", "COST", "LATENCY", "QUALITY", "KEY"],
        [
            [
                r["provider"],
                r["model"],
                r["class"],
                f"${r['base_cost']:.4f}",
                f"{r['base_latency_ms']:.0f}ms",
                f"{r['base_quality']:.2f}",
                "✓" if r["available"] else "-",
            ]
            for r in rows
        ],
    )


@cli.command()
@click.argument('request_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--tier', type=click.Choice(TIER_CHOICES, case_sensitive=False), default='DEVELOPER', help='契約ティア')
@click.option('--app-id', default='cli', help='アプリケーションID')
@click.option('--user-id', default='cli-user', help='ユーザーID')
@pass_context
def route(ctx: CLIContext, request_file: str, tier: str, app_id: str, user_id: str):
    """YAML のリクエストをルーティングし、判断結果を JSON で表示する

    optimize_for を省略した場合は ROUTING_OPTIMIZE_FOR（既定 balanced）を使う。
    """
    ctx.initialize()
    try:
        data = load_yaml(request_file)
        validate_routing_request(data)
        request = RoutingRequest.from_dict(data, default_optimize_for=ctx.config.default_optimize_for)
    except (YamlValidationError, ValueError) as e:
        echo_error(f"リクエストが不正です: {e}")
        sys.exit(2)

    auth = AuthContext.for_tier(app_id, user_id, tier)
    try:
        decision = ctx.engine.route(request, auth)
    except RoutingError as e:
        echo_error(f"{e.code}: {e}")
        sys.exit(1)

    echo_json(decision.to_dict())


# 各コマンドを追加
experiment_command(cli, pass_context)


if __name__ == '__main__':
    cli()

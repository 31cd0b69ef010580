# プロバイダーAPIキーの解決
"""
APIキー解決モジュール

ルーティングエンジンは APIキーそのものを扱わず、
プロバイダーが利用可能かどうか（キーが解決できるか）のみを判定に使う。
"""

import os
from abc import ABC, abstractmethod
from typing import Dict, Optional

from src.config.routing_config import PROVIDER_API_KEY_ENV
from src.models.routing import Provider


class ApiKeyResolver(ABC):
    """プロバイダーの認証情報を解決するインターフェース"""

    @abstractmethod
    def resolve(self, provider: Provider) -> Optional[str]:
        """認証情報を返す。None の場合そのプロバイダーはルーティング対象外"""

    def is_available(self, provider: Provider) -> bool:
        key = self.resolve(provider)
        return key is not None and len(key) > 0


class EnvApiKeyResolver(ApiKeyResolver):
    """環境変数から APIキーを解決

    環境変数:
        OPENAI_API_KEY / ANTHROPIC_API_KEY / GOOGLE_API_KEY
    """

    def __init__(self, env_names: Optional[Dict[str, str]] = None):
        self.env_names = env_names or PROVIDER_API_KEY_ENV

    def resolve(self, provider: Provider) -> Optional[str]:
        env_name = self.env_names.get(provider.value)
        if env_name is None:
            return None
        return os.getenv(env_name)


class StaticApiKeyResolver(ApiKeyResolver):
    """固定の辞書から APIキーを解決（テスト・CLI用）"""

    def __init__(self, keys: Dict[Provider, str]):
        self._keys = dict(keys)

    def resolve(self, provider: Provider) -> Optional[str]:
        return self._keys.get(provider)

    @classmethod
    def all_providers(cls) -> "StaticApiKeyResolver":
        """全プロバイダーを利用可能として扱う"""
        return cls({provider: f"static-{provider.value.lower()}" for provider in Provider})

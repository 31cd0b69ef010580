# CLI commands module
"""
CLIコマンド実装パッケージ

各コマンドは独立したモジュールとして実装され、
main.py から登録されます。
"""

from .experiment import experiment_command

__all__ = [
    "experiment_command",
]

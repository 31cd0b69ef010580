"""Output formatting helpers for CLI."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable, List, Sequence

import click


def format_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Format rows as a left-aligned table."""
    rows_list: List[List[str]] = [[str(cell) for cell in row] for row in rows]
    widths = [len(str(h)) for h in headers]
    for row in rows_list:
        for idx, cell in enumerate(row[: len(widths)]):
            widths[idx] = max(widths[idx], len(cell))

    def _line(cells: Sequence[str]) -> str:
        return " ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)).rstrip()

    header_line = _line([str(h) for h in headers])
    return "\n".join([header_line, "-" * len(header_line)] + [_line(row) for row in rows_list])


def echo_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    click.echo(format_table(headers, rows))


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def echo_json(data: Any) -> None:
    """Echo JSON with UTF-8 characters preserved (enums as values)."""
    click.echo(json.dumps(data, ensure_ascii=False, indent=2, default=_to_jsonable))


def echo_error(message: str) -> None:
    click.echo(f"[エラー] {message}", err=True)

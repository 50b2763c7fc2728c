import json
import os
from typing import Any, Dict, List, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BIBLIOTECA_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _cell(value: Any) -> str:
    return "pendiente" if value is None else str(value)


def print_rows(title: str, rows: List[Dict[str, Any]], columns: Sequence[str]) -> None:
    """Print rows according to the output mode.
    - plain: one ' | '-separated line per row, or 'No hay registros.'
    - json: JSON array with the selected columns
    - rich: Rich table
    """
    mode = get_output_mode()

    if not rows:
        print("No hay registros.")
        return

    if mode == "json":
        print(json.dumps([{c: r.get(c) for c in columns} for r in rows], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for column in columns:
            table.add_column(column)
        for r in rows:
            table.add_row(*(_cell(r.get(c)) for c in columns))
        _console.print(table)
    else:
        for r in rows:
            print(" | ".join(_cell(r.get(c)) for c in columns))


def print_record(title: str, record: Dict[str, Any]) -> None:
    """Print a single record as 'key: value' lines, JSON, or a Rich panel."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(record, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k}:[/] {_cell(v)}" for k, v in record.items())
        _console.print(Panel.fit(content, title=title, border_style="blue"))
    else:
        print(title)
        for k, v in record.items():
            print(f"{k}: {_cell(v)}")

import os
import json
from typing import Any, Dict, List, Sequence
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)

def print_records(title: str, records: Sequence[Any], columns: List[str], empty_message: str) -> None:
    """Print records (anything with to_dict) in the current output mode.
    - plain: 'id: 1, name: ...' lines, or the empty message
    - json: JSON array of the selected columns
    - rich: Rich table
    """
    mode = get_output_mode()

    if not records:
        print(empty_message)
        return

    rows = [{col: r.to_dict().get(col) for col in columns} for r in records]
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for col in columns:
            table.add_column(col.replace("_", " ").title(), style="magenta" if col == "id" else "white",
                             no_wrap=col == "id")
        for row in rows:
            table.add_row(*(_format_value(row[col]) for col in columns))
        _console.print(table)
    else:
        for row in rows:
            print(", ".join(f"{col}: {_format_value(row[col])}" for col in columns))

def print_stats_result(stats: Dict[str, int]) -> None:
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key.replace('_', ' ').title()}:[/] {value}" for key, value in stats.items())
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').title()}: {value}")

"""
Formatting helpers for MCP tool output.
"""

from datetime import date, datetime
from typing import Any


def format_value(value: Any) -> str:
    """Format a value for display.

    Args:
        value: The value to format.

    Returns:
        String representation suitable for display.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "sim" if value else "não"
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y %H:%M")
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, float):
        if value == int(value):
            return str(int(value))
        return f"{value:.2f}"
    return str(value)


def format_table_results(
    rows: list[dict[str, Any]],
    columns: list[str] | None = None,
    max_column_width: int = 40,
) -> str:
    """Format rows as a plain-text table.

    Args:
        rows: List of row dictionaries.
        columns: Columns to show, in order (default: keys of the first row).
        max_column_width: Maximum width for columns.

    Returns:
        Formatted table string.
    """
    if not rows:
        return "No results found."

    columns = columns or list(rows[0].keys())

    widths = {}
    for col in columns:
        col_values = [format_value(row.get(col)) for row in rows]
        max_val_width = max(len(v) for v in col_values) if col_values else 0
        widths[col] = min(max(len(col), max_val_width), max_column_width)

    header = " | ".join(col.ljust(widths[col])[:widths[col]] for col in columns)
    separator = "-+-".join("-" * widths[col] for col in columns)

    formatted_rows = []
    for row in rows:
        formatted_rows.append(
            " | ".join(
                format_value(row.get(col)).ljust(widths[col])[:widths[col]]
                for col in columns
            )
        )

    return "\n".join([header, separator] + formatted_rows)


def format_money(value: float) -> str:
    """Format a value as Brazilian currency (R$ 1.234,56)."""
    text = f"{value:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")

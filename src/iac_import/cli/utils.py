"""
Utility functions for CLI commands.

Colored status lines and rich tables for batch and discovery output.
"""

from datetime import datetime
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from iac_import.models import DiscoveredResource, ImportBatch

console = Console()


def echo_success(message: str) -> None:
    """Print success message in green."""
    click.secho(f"✓ {message}", fg="green")


def echo_error(message: str) -> None:
    """Print error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def echo_warning(message: str) -> None:
    """Print warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def echo_info(message: str) -> None:
    """Print info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def format_timestamp(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[Any]],
    show_header: bool = True,
) -> None:
    """
    Print a formatted table using rich.

    Args:
        title: Table title
        columns: Column headers
        rows: List of row data
        show_header: Whether to show header row
    """
    table = Table(title=title, show_header=show_header)
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*["" if cell is None else str(cell) for cell in row])
    console.print(table)


def print_stats(stats: dict[str, Any], title: str = "Statistics") -> None:
    """Print key/value statistics as a two-column table."""
    rows = [[key.replace("_", " ").title(), str(value)] for key, value in stats.items()]
    print_table(title, ["Metric", "Value"], rows)


def print_resources(resources: list[DiscoveredResource], title: str = "Discovered Resources") -> None:
    rows = [
        [r.provider.value, r.resource_type, r.resource_id, r.name or r.tags.get("Name"), r.region]
        for r in sorted(resources, key=lambda r: (r.resource_type, r.resource_id))
    ]
    print_table(title, ["Provider", "Type", "ID", "Name", "Region"], rows)


def print_batch(batch: ImportBatch) -> None:
    """Print a batch's entries in import order."""
    rows = [
        [e.ordinal, e.address or "-", e.resource.resource_id, e.status.value, e.error or ""]
        for e in batch.ordered_entries()
    ]
    print_table(
        f"Batch {batch.batch_id} ({batch.status.value})",
        ["#", "Address", "Resource ID", "Status", "Error"],
        rows,
    )

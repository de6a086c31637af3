"""
bundlekit CLI - Rich Output Helpers

Utility functions for consistent command-line output using Rich.

Functions:
    print_table            - Print a formatted table
    print_json             - Print formatted JSON
    print_error            - Print error message
    print_unpack_warnings  - Print the warnings of an unpack run
    print_unpack_summary   - Print extension, bundle and extraction counts
    print_dependency_tree  - Print the bundle dependency tree
"""

from __future__ import annotations

import json
from typing import Optional

from rich.console import Console
from rich.json import JSON
from rich.table import Table
from rich.tree import Tree

from bundlekit.nar import BundleDependencyGraph, UnpackResult, UnpackWarning

# Create console instances
console = Console()
err_console = Console(stderr=True)


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    styles: Optional[list[str]] = None,
    show_header: bool = True,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows (list of lists)
        styles: Optional column styles
        show_header: Whether to show column headers
    """
    table = Table(title=title, show_header=show_header)

    for i, col in enumerate(columns):
        style = styles[i] if styles and i < len(styles) else None
        table.add_column(col, style=style, overflow="fold")

    for row in rows:
        # Ensure row has correct number of columns
        padded_row = list(row) + [""] * (len(columns) - len(row))
        table.add_row(*padded_row[:len(columns)])

    console.print(table)


def print_json(
    data: dict | list,
    indent: int = 2,
    highlight: bool = False,
    sort_keys: bool = False,
) -> None:
    """
    Print formatted JSON.

    Unhighlighted output is written without wrapping so it stays parseable.

    Args:
        data: Data to print as JSON
        indent: Indentation level
        highlight: Whether to syntax highlight
        sort_keys: Whether to sort dictionary keys
    """
    json_str = json.dumps(data, indent=indent, sort_keys=sort_keys, default=str)
    if highlight:
        console.print(JSON(json_str))
    else:
        console.out(json_str, highlight=False)


def print_error(
    message: str,
    details: Optional[str] = None,
    hint: Optional[str] = None,
) -> None:
    """
    Print error message.

    Args:
        message: Error message
        details: Optional detailed error information
        hint: Optional hint for resolving the error
    """
    err_console.print(f"[bold red]Error:[/bold red] {message}")

    if details:
        err_console.print(f"[dim]{details}[/dim]")

    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")


def print_unpack_warnings(warnings: list[UnpackWarning]) -> None:
    """
    Print the non-fatal problems of an unpack run, one per line.

    Each line starts with the warning kind so it can be grepped.
    """
    for warning in warnings:
        console.print(
            f"[bold yellow]{warning.kind.value}[/bold yellow] {warning.message}",
            highlight=False,
        )


def print_unpack_summary(result: UnpackResult) -> None:
    """Print extension and bundle counts, then how many archives were unpacked."""
    console.print(
        f"[bold green]Done:[/bold green] {len(result.mapping)} extensions "
        f"from {len(result.graph)} bundles",
        highlight=False,
    )
    console.print(
        f"[dim]{len(result.extracted)} unpacked, {len(result.reused)} up to date[/dim]",
        highlight=False,
    )


def print_dependency_tree(graph: BundleDependencyGraph, title: str = "Bundles") -> None:
    """
    Print bundles as a tree, each one under the bundle it depends on.

    Args:
        graph: Resolved dependency graph
        title: Root node title
    """
    tree = Tree(f"[bold]{title}[/bold]", guide_style="dim")

    def add_dependents(node: Tree, bundle_id: str) -> None:
        for dependent in graph.dependents_of(bundle_id):
            add_dependents(node.add(f"[cyan]{dependent}[/cyan]"), dependent)

    for root in graph.roots:
        add_dependents(tree.add(f"[cyan]{root}[/cyan]"), root)
    console.print(tree)

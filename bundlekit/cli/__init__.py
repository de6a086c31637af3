"""
bundlekit - Command Line Interface

Command line access to the bundle unpacker. Built with Typer for the
command-line experience and Rich for output.

Usage:
    $ bundlekit --help
    $ bundlekit unpack --lib ./lib --alt ./lib2 --work ./work/extensions
    $ bundlekit unpack --config conf/bundles.properties --format json
    $ bundlekit inspect ./lib/dummy-one.nar
    $ bundlekit graph --config conf/bundles.properties

For detailed help on any command:
    $ bundlekit <command> --help
"""

from __future__ import annotations

import logging

import typer

from bundlekit import __version__
from bundlekit.cli.output import console, err_console

# Create main application
app = typer.Typer(
    name="bundlekit",
    help="bundlekit - unpack extension bundle archives and map their extensions",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"bundlekit version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        logging.basicConfig(level=logging.DEBUG)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    bundlekit - unpack extension bundle archives

    Scans library directories for bundle archives, unpacks the ones that
    changed and reports which bundle provides each extension.
    """
    pass


def _register_subcommands() -> None:
    """Register all subcommand modules."""
    from bundlekit.cli import bundles  # noqa: F401


_register_subcommands()

# Expose the app for use in submodules
__all__ = [
    "app",
    "console",
    "err_console",
    "__version__",
]


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()

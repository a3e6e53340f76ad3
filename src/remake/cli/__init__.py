"""Command-line interface (``remake ...``)."""

from remake.cli.app import app

__all__ = ["app"]

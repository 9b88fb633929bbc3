"""Command-line interface (``billing-worker``)."""

from billing_worker.cli.app import app

__all__ = ["app"]

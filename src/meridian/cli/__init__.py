"""meridian command-line interface (``meridian`` console script)."""

from meridian.cli.app import app

__all__ = ["app"]

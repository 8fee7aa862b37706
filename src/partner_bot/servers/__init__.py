"""HTTP surface of the bot: OAuth callback, health check and entry point."""

from .app import create_app  # noqa: F401

__all__ = ["create_app"]

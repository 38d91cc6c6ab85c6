"""Route modules exposed by the API package."""

from . import changes, metrics, ping, tickets

__all__ = ["changes", "metrics", "ping", "tickets"]

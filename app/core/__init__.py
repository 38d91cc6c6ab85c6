"""Configuration, logging and tracing for the ticket lifecycle API."""

from .config import Settings, get_settings

__all__ = ["Settings", "get_settings"]

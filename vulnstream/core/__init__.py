"""Core app configuration, database and logging."""

from vulnstream.core.config import get_settings, settings
from vulnstream.core.database import create_embedded_engine

__all__ = ["get_settings", "settings", "create_embedded_engine"]

"""SQLAlchemy ORM models."""

from vulnstream.models.base import Base
from vulnstream.models.vulnerability import VulnerabilityRow

__all__ = ["Base", "VulnerabilityRow"]

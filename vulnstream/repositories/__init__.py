from vulnstream.repositories.base import RepositoryError, VulnerabilityRepository
from vulnstream.repositories.embedded import EmbeddedRepository
from vulnstream.repositories.memory import MemoryRepository
from vulnstream.repositories.remote import RemoteRepository

__all__ = [
    "EmbeddedRepository",
    "MemoryRepository",
    "RemoteRepository",
    "RepositoryError",
    "VulnerabilityRepository",
]

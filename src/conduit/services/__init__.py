"""
Services for Conduit.
"""

from .store import SynchronizationStore
from .memory import InMemoryStore
from .secrets import CredentialResolver, SecretManagerService

__all__ = [
    "SynchronizationStore",
    "InMemoryStore",
    "CredentialResolver",
    "SecretManagerService",
]

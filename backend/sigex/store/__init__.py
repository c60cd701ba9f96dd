from .base import DurableStore, ExpedienteTransaction
from .memory import InMemoryStore
from .mongo import MongoStore

__all__ = ["DurableStore", "ExpedienteTransaction", "InMemoryStore", "MongoStore"]

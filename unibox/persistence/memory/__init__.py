from .inbox_repository import MemoryInboxRepository

__all__ = ["MemoryInboxRepository"]

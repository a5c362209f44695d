from .inbox_repository import SQLInboxRepository

__all__ = ["SQLInboxRepository"]

from .inbox_repository import InboxRepository

__all__ = ["InboxRepository"]

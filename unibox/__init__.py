"""
Unibox - unified inbox gateway for WhatsApp, Instagram and Messenger.

Provider transport, channel adapters, webhook ingestion, OAuth credential
discovery and outbound send orchestration behind one FastAPI app.
"""

from .core.config.settings import settings
from .core.unibox_app import create_app

__version__ = settings.version

__all__ = ["create_app"]

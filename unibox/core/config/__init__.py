"""Configuration module for Unibox."""

from .settings import settings

__all__ = ["settings"]

"""Pydantic schemas and shared enums."""

"""Webhook signature validation and ingestion."""

from .ingestor import IngestReport, WebhookIngestor
from .signature import compute_signature, verify_signature

__all__ = ["IngestReport", "WebhookIngestor", "compute_signature", "verify_signature"]

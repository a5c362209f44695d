"""Gateway services: discovery, sending, enrichment and status rules."""

"""Meta Graph API transport and channel adapters."""

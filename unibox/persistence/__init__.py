"""InboxRepository implementations."""

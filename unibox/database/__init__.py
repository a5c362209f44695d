"""SQLModel tables and the async session manager."""

"""Background task helpers (health check, cache cleanup)."""

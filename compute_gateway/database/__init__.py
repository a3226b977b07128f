"""Store interface, its MongoDB/Redis and in-memory implementations."""

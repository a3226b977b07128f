"""Shared FastAPI dependencies: caller identity, admin access and rate limits."""

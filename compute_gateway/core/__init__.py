"""Configuration, errors, pricing and rate limiting."""

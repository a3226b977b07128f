"""Compute Gateway: paid compute job marketplace for agent clients."""

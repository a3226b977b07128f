"""One-shot maintenance workers (run with python -m)."""

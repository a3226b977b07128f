"""Gateway orchestrator and the services it composes."""

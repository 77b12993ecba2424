"""Per-connection protocol engine."""

"""JSON Schema validation."""

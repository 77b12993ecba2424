"""Event log sinks."""

"""Core recovery state and error types."""

"""Data shapes shared across services and the wire protocol."""

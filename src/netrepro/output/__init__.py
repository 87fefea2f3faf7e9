"""Output helpers for rendering service results."""

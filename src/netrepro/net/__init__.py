"""Networking core: listeners, the line handler, and the lifecycle."""

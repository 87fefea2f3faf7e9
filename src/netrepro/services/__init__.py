"""Service layer — the boundary between the CLI and the networking core."""

"""netrepro: line-acknowledging TCP service for overlay-network diagnostics."""

__version__ = "0.1.0"

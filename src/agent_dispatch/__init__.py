"""Task scheduling and coding-agent dispatch engine."""

__version__ = "0.1.0"

"""rolekeeper — self-healing managed roles for remote, multi-tenant role systems."""

__version__ = "0.1.0"

"""Chat debugging console for agent-runtime backends."""

__version__ = "0.1.0"

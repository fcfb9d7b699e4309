"""Real-time voice conversation client and its streaming backend."""

__version__ = "0.1.0"

"""pairchat: real-time two-party messaging backend."""

__version__ = "0.1.0"

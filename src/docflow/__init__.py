"""docflow - community messages to reviewed documentation changes."""

__version__ = "0.1.0"

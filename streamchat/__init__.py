"""streamchat -- streaming client core for OpenAI-compatible chat endpoints."""

__version__ = "0.1.0"

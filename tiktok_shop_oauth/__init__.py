"""TikTok Shop OAuth handshake, credential lifecycle and signed API client."""

__version__ = "0.1.0"

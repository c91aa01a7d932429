"""TrackVerse developer API core: API keys, rate limiting and webhooks."""

__version__ = "1.0.0"

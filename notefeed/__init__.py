"""notefeed: notification ingestion and normalization for Misskey accounts."""

__version__ = "0.1.0"

"""Upload to and browse a single S3-compatible bucket."""

__version__ = "0.1.0"

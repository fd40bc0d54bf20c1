"""TagPipe - consent-gated analytics event pipeline."""

__version__ = "1.0.0"

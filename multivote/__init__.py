"""Multi-tenant elections with one-time-code voter login."""

__version__ = "1.0.0"

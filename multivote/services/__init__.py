"""FastAPI applications, one per bounded context."""

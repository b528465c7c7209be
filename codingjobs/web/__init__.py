"""FastAPI web API for coding jobs."""

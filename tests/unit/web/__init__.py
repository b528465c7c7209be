"""Unit tests for coding jobs web route modules.

Each route module has a corresponding test file.

Testing pattern:
    - Use FastAPI's TestClient on a bare app with one router included
    - Patch ``get_session`` and the service functions the route calls
    - Override ``get_job_manager`` with a mock manager
"""

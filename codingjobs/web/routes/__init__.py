"""Route modules of the coding jobs web API.

Each module handles one functional area using FastAPI's APIRouter:
- distribution: preview and create distributed coding jobs
- jobs: background job control and status polling
- statistics: Cohen's Kappa over double-coded responses
- definitions: job definition workflow
"""

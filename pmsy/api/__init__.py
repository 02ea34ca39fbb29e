"""PMSY REST API.

FastAPI application exposing the generic table endpoints and the task
dependency endpoints.
"""

from pmsy.api.app import create_app
from pmsy.api.config import APIConfig, DEFAULT_API_CONFIG

__all__ = [
    "APIConfig",
    "DEFAULT_API_CONFIG",
    "create_app",
]

"""
API endpoints module.
"""

from signin_sync.api import sync
from signin_sync.api.router import api_router

__all__ = [
    "sync",
    "api_router",
]

"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.correlations import router as correlations_router

__all__ = [
    "correlations_router",
]

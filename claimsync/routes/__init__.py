"""
Routes Package

FastAPI routers exposing the sync core to the UI layer.
"""

from claimsync.routes.sync import router as sync_router

__all__ = ["sync_router"]

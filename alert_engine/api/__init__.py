"""
FastAPI delivery boundary.

Provides:
- POST /internal/alerts/trigger-batch - Deliver a batch of queued notifications
- GET /health - Service health check
"""

from alert_engine.api.app import create_app

__all__ = ["create_app"]

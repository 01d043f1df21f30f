"""
Logs Package
============

Proxy from the gateway to the CloudWatch Logs store.

Main Components:
----------------
- store.py: LogStore wrapper around the boto3 "logs" client
- routes.py: FastAPI router with GET /api/logs
"""

from .routes import logs_router

__all__ = ["logs_router"]

"""
API Routers - Modular organization of API endpoints
"""
from . import autonomy, health, linear_webhooks

__all__ = ["autonomy", "health", "linear_webhooks"]

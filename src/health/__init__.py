"""Health check endpoints."""

from src.health.router import router


__all__ = ["router"]

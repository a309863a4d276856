# backend/courier/schemas/health.py
"""Health check response schemas."""

from ._strict_base import StrictModel


class HealthResponse(StrictModel):
    status: str
    service: str
    environment: str
    timestamp: str
    database: str
    connected_users: int
    live_connections: int


class LiveResponse(StrictModel):
    status: str

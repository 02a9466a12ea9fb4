"""
Observability Module — Health checks for the fork.
"""

from .health import ComponentHealth, HealthChecker, HealthStatus, SystemHealth

__all__ = [
    "HealthChecker",
    "HealthStatus",
    "SystemHealth",
    "ComponentHealth",
]

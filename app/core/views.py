"""
Infrastructure endpoints that sit outside the billing domain.
"""

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check for load balancers and container orchestration.

    Reports database and cache connectivity plus the payment provider
    circuit. Only the database decides the status code: the cache degrades
    gracefully and an open provider circuit only delays reconciliation.

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "provider": {"name": "polar-api", "state": "closed", ...}
        }
    """
    from billing.adapters import PolarAdapter

    health_status = {
        "status": "healthy",
        "database": "connected",
        "cache": "connected",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"

    # django-redis runs with IGNORE_EXCEPTIONS, so a dead cache reads as a miss
    cache.set("health_check", "ok", timeout=5)
    if cache.get("health_check") != "ok":
        health_status["cache"] = "disconnected"

    health_status["provider"] = PolarAdapter.circuit.get_status()

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JsonResponse(health_status, status=status_code)

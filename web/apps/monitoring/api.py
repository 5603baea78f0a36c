import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.repository import ServiceStatusRepository

logger = logging.getLogger("monitoring.health")


def health_view(_request):
    """Report database reachability and whether checkout is accepting orders.

    A stopped service is still healthy (200); only a database failure turns
    the check into 503.
    """
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.exception("health check: database unreachable")

    status_component = {"ok": False}
    if db_ok:
        try:
            state = ServiceStatusRepository().current()
            status_component = {"ok": True, "accepting_orders": not state.stopped}
        except DatabaseError:
            logger.exception("health check: service status unreadable")

    ok = db_ok and status_component["ok"]
    return JsonResponse(
        {"ok": ok, "components": {"db": {"ok": db_ok}, "service_status": status_component}},
        status=200 if ok else 503,
    )

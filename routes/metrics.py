import logging

from fastapi import APIRouter
from fastapi.responses import Response

from app.jobs import repository as jobs_repo
from db import get_conn
from services.metrics import render_prometheus

logger = logging.getLogger("questpay.api")
router = APIRouter(tags=["metrics"])


def _queue_gauges() -> str:
    try:
        with get_conn() as conn:
            stats = jobs_repo.queue_stats(conn)
    except Exception:
        # counters are still worth serving when the database is down
        logger.warning("queue depth unavailable for /metrics", exc_info=True)
        return ""
    lines = ["# TYPE jobs_queue_depth gauge"]
    for status, n in sorted(stats.items()):
        lines.append(f'jobs_queue_depth{{status="{status}"}} {n}')
    return "\n".join(lines) + "\n"


@router.get("/metrics")
def metrics():
    body = render_prometheus() + _queue_gauges()
    return Response(content=body, media_type="text/plain; version=0.0.4")

#main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.errors import PipelineError
from db import close_pool
from middleware import RequestContextMiddleware
from routes.admin import router as admin_router
from routes.health import router as health_router
from routes.jobs import router as jobs_router
from routes.metrics import router as metrics_router
from routes.payouts import router as payouts_router
from routes.submissions import router as submissions_router
from services.http_errors import to_http_exception

logger = logging.getLogger("questpay.api")

app = FastAPI(title="QuestPay Pipeline API", version="1.0.0")

app.add_middleware(RequestContextMiddleware)

# -----------------------------
# ROUTERS
# -----------------------------

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(jobs_router)
app.include_router(submissions_router)
app.include_router(payouts_router)
app.include_router(admin_router)


@app.on_event("shutdown")
def _shutdown() -> None:
    close_pool()


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    http_exc = to_http_exception(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )

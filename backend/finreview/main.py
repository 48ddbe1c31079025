from __future__ import annotations

import json
import logging
import os
import time

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# .env must be loaded before the routers import their settings
load_dotenv()
_backend_env = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")
if os.path.exists(_backend_env):
    load_dotenv(_backend_env)

from finreview.api.forms import router as forms_router  # noqa: E402
from finreview.api.metrics import router as metrics_router  # noqa: E402
from finreview.api.review import router as review_router  # noqa: E402
from finreview.api.tools import router as tools_router  # noqa: E402
from finreview.db.session import db_enabled, session_scope  # noqa: E402

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

app = FastAPI(title="Financial Form Review Backend", version="0.1.0")

allowed = os.getenv("ALLOWED_ORIGINS")
allow_origins = [o.strip() for o in allowed.split(",") if o.strip()] if allowed else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# One JSON line per request, tagged with request_id and correlation_id
@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    start = time.time()
    req_id = request.headers.get("X-Request-ID") or hex(int(start * 1e9))[-12:]
    corr = request.headers.get("X-Correlation-ID") or request.query_params.get("correlation_id")
    try:
        response = await call_next(request)
    except Exception as e:
        log = {
            "level": "error",
            "msg": "request_error",
            "method": request.method,
            "path": request.url.path,
            "duration_ms": int((time.time() - start) * 1000),
            "request_id": req_id,
            "correlation_id": corr,
            "error": str(e),
        }
        print(json.dumps(log, ensure_ascii=False))
        raise
    log = {
        "level": "info",
        "msg": "request",
        "method": request.method,
        "path": request.url.path,
        "status": response.status_code,
        "duration_ms": int((time.time() - start) * 1000),
        "request_id": req_id,
        "correlation_id": corr,
        "client": request.client.host if request.client else None,
    }
    print(json.dumps(log, ensure_ascii=False))
    response.headers["X-Request-ID"] = req_id
    if corr:
        response.headers["X-Correlation-ID"] = corr
    return response


app.include_router(review_router)
app.include_router(tools_router)
app.include_router(forms_router)
app.include_router(metrics_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "version": app.version}


@app.get("/health/db")
def health_db() -> dict:
    if not db_enabled():
        return {"enabled": False}
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    try:
        t0 = time.time()
        with session_scope() as db:
            db.execute(text("SELECT 1"))
        return {"enabled": True, "connection": "ok", "ping_ms": int((time.time() - t0) * 1000), "version": app.version}
    except SQLAlchemyError as e:
        logger.exception("DB health check failed")
        return {"enabled": True, "connection": "error", "detail": str(e)}

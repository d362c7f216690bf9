import os
import time
import uuid
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from repair_orchestrator.api.sessions import router as sessions_router
from repair_orchestrator.services.run_registry import registry
from repair_orchestrator.utils.logging_config import setup_logging

setup_logging()
logger = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Runs live only in this process; cancelled runs stay resumable on disk
    cancelled = await registry.cancel_all()
    if cancelled:
        logger.warning("Shutdown cancelled %d live run(s): %s", len(cancelled), ", ".join(cancelled))


app = FastAPI(title="Test Repair Orchestrator API", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
        started = time.perf_counter()
        logger.info("[%s] %s %s", request_id, request.method, request.url.path)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "[%s] %s %s failed after %.1fms: %s",
                request_id, request.method, request.url.path,
                (time.perf_counter() - started) * 1000, exc,
            )
            raise

        response.headers["x-request-id"] = request_id
        logger.info(
            "[%s] %s %s -> %d in %.1fms",
            request_id, request.method, request.url.path, response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response


app.add_middleware(LoggingMiddleware)

# Local operator dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    live = [sid for sid in registry.session_ids() if registry.is_running(sid)]
    return {"status": "ok", "live_runs": len(live)}


app.include_router(sessions_router)

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", 8000)),
    )

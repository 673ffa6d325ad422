from app.core.env import load_env
load_env()
# Initialize structured logging early
from app.core.logging import configure_logging
configure_logging()

from contextlib import asynccontextmanager
import datetime
import time

from fastapi import APIRouter, Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import models  # noqa: F401  registers every table
from app.core.exceptions import http_exception_handler, validation_exception_handler
from app.core.logging import get_logger
from app.db.deps import get_db
from app.integrations.edge_functions.client import EdgeFunctionClient
from app.integrations.storage import StorageClient
from app.middleware.logging import logging_middleware
from app.realtime.bridge import RealtimeBridge
from app.realtime.capture import install_change_capture
from app.realtime.channels import KafkaChannelFactory

# Import routers from modules
from app.modules.auth.routes import router as auth_router
from app.modules.documents.routes import router as documents_router
from app.modules.generation.routes import router as generation_router
from app.modules.progress.routes import router as progress_router
from app.realtime.routes import router as realtime_router

logger = get_logger(__name__)

install_change_capture()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.storage_client = StorageClient()
    app.state.edge_function_client = EdgeFunctionClient()
    app.state.realtime_bridge = RealtimeBridge(KafkaChannelFactory())
    logger.info("fastapi process started", storage_mode=app.state.storage_client.mode)
    try:
        yield
    finally:
        app.state.realtime_bridge.close()
        await app.state.edge_function_client.aclose()
        logger.info("fastapi process stopped")


app = FastAPI(title="Luna Pipeline API", lifespan=lifespan)
# Record process start time for uptime reporting
_START_TIME = time.time()

app.middleware("http")(logging_middleware)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Create main API router
api_router = APIRouter()
api_router.include_router(auth_router)
api_router.include_router(documents_router)
api_router.include_router(progress_router)
api_router.include_router(generation_router)
api_router.include_router(realtime_router)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    """Simple health endpoint returning status, uptime, and timestamp."""
    uptime = time.time() - _START_TIME
    payload = {
        "status": "ok",
        "uptime_seconds": round(uptime, 2),
        "timestamp": datetime.datetime.utcnow().isoformat() + "Z",
    }
    return JSONResponse(content=payload)


@app.get("/db/health")
def db_health_sa(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"db": "ok"}

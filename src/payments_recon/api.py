import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from .database import init_db, close_db
from .reconciliation.api import router, limiter
from .reconciliation.errors import ReconciliationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Payments Reconciliation API", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(router)


@app.exception_handler(ReconciliationError)
@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: Exception):
    # Storage problems surface as a generic 5xx; details stay in the logs
    logger.error(f"Reconciliation storage error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Reconciliation storage unavailable"})

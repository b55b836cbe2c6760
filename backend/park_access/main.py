# park access api
# fastapi app with async mongodb, jwt identities, pin and invite lock access

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from park_access.config import settings
from park_access.errors import AccessError
from park_access.services.db import db
from park_access.services.lock_controller import get_lock_controller
from park_access.routers import credentials, invites, locks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """startup: connect to mongodb and ensure indexes. shutdown: close connections."""
    logger.info("Starting park access backend...")
    await db.connect()
    await db.ensure_indexes()
    logger.info(f"Park access backend ready (lock controller: {settings.LOCK_CONTROLLER})")
    yield
    logger.info("Shutting down park access backend...")
    controller = await get_lock_controller()
    await controller.close()
    await db.close()


app = FastAPI(
    title="Park Access API",
    description="Time-bound PIN credentials and shared invite links for dog-park smart locks",
    version="0.1.0",
    lifespan=lifespan,
)

# cors: allow frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError):
    """render typed access failures so the client can pick purpose-specific guidance"""
    logger.info(f"{request.method} {request.url.path} -> {exc.status}: {exc.detail}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# register routers
app.include_router(credentials.router)
app.include_router(invites.router)
app.include_router(locks.router)


@app.get("/health")
async def health_check():
    """basic health check endpoint"""
    return {"status": "ok", "service": "park-access-api"}

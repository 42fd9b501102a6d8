# === apipilot/main.py ===
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from contextlib import asynccontextmanager
from apipilot.api.deps import build_services
from apipilot.api.v1.api import api_router
from apipilot.db.database import async_session, create_db_and_tables
from apipilot.core.config import settings
import time
import logging

#logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up...")
    await create_db_and_tables()
    # tests install their own services before startup
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings, async_session)
    yield
    logger.info("Shutting down, waiting for background analysis...")
    await app.state.services.queue.join()

app = FastAPI(
    lifespan=lifespan,
    title="API Pilot",
    description="Discover APIs in documentation and execute them",
    version="1.0.0"
)

#middleware security
app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])

#CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] if settings.FRONTEND_URL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Process-Time"],
    max_age=86400,  # 24 hours
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    # Log slow requests
    if process_time > 30:
        logger.warning(f"Slow request: {request.method} {request.url} took {process_time:.2f}s")

    return response

#API router
app.include_router(api_router, prefix="/api/v1")

#health check
@app.get("/health")
async def health_check():
    services = getattr(app.state, "services", None)
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": "1.0.0",
        "pending_analyses": services.queue.pending if services else 0,
    }

#root
@app.get("/")
async def root():
    return {
        "message": "API Pilot",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "apipilot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

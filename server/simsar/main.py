import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .affiliation.services.events import close_notifier, init_notifier
from .config import load_settings
from .database import close_pool, init_db, init_pool

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    settings = load_settings()
    print(f"[Simsar] Starting server on port {settings.port}")
    print(f"[Simsar] Affiliation cascade scope: {settings.cascade_scope}")

    # Initialize database
    await init_pool(settings.database_url)
    await init_db()

    # Redis publisher for affiliation notifications
    if settings.notifications_enabled:
        await init_notifier(settings.redis_url)
        print(f"[Simsar] Affiliation notifier connected to {settings.redis_url}")

    yield

    # Cleanup
    await close_notifier()
    await close_pool()
    print("[Simsar] Server shutdown complete")


app = FastAPI(
    title="Simsar Affiliation API",
    description="Broker/agency affiliation and recruitment matching",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS - allow frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from .affiliation.routes import affiliation_router

app.include_router(affiliation_router, prefix="/api")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "simsar-affiliation"}

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import LOG_LEVEL, get_cors_origins
from database import engine, Base, SessionLocal
from errors import EngineError
from routes import quotes, invoices, templates, public, notifications, settings
from seed import seed_studio_settings

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("studiodesk")

# Create all database tables (idempotent - safe fallback for fresh installs,
# schema changes go through alembic)
Base.metadata.create_all(bind=engine)
logger.info("[STARTUP] Database tables ensured")


# Seed studio defaults on startup
def init_db():
    db = SessionLocal()
    try:
        seed_studio_settings(db)
    finally:
        db.close()

init_db()

app = FastAPI(
    title="Studio Desk",
    description="Quotes, invoices and templates for a creative studio's back office",
    version="1.0.0"
)

# CORS middleware for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})


# Include routers
app.include_router(quotes.router)
app.include_router(invoices.router)
app.include_router(templates.router)
app.include_router(public.router)
app.include_router(notifications.router)
app.include_router(settings.router)


@app.get("/")
def root():
    """Root endpoint to verify API is running."""
    return {
        "message": "Studio Desk API",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    """Start the API server (studiodesk console script)."""
    import os
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "").lower() in ("1", "true", "yes"),
    )


if __name__ == "__main__":
    run()

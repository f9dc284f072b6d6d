from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
import models
from database import engine, Base, SessionLocal
from errors import TrackingError, StoreUnavailableError
from logging_config import setup_logging
from reaper import SessionReaper
from routers import visitor, analytics, reports

logger = setup_logging()

# Create tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    reaper = None
    if config.REAPER_ENABLED:
        reaper = SessionReaper(
            SessionLocal,
            interval_seconds=config.REAPER_INTERVAL_SECONDS,
            idle_minutes=config.SESSION_IDLE_MINUTES,
        )
        reaper.start()
    app.state.reaper = reaper
    logger.info("Visitor Analytics API started")
    yield
    if reaper is not None:
        reaper.stop()


app = FastAPI(title="Visitor Analytics API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError):
    if isinstance(exc, StoreUnavailableError):
        logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "detail": exc.detail})


# Include routers
app.include_router(visitor.router, prefix="/api/visitor", tags=["Visitor"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])


@app.get("/")
def root():
    return {"message": "Visitor Analytics API"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}

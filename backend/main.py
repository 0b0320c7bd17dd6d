"""
Grading Engine — academic grading & promotion rules service.
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.recompute import EnrollmentLocks, default_max_workers
from core.store import InMemoryFactStore
from middlewares.error_handler import add_error_handlers
from routes.achievements import router as achievements_router
from routes.grades import router as grades_router
from routes.promotion import router as promotion_router
from routes.recompute import router as recompute_router
from routes.reports import router as reports_router
from routes.roster import router as roster_router

# Load environment
load_dotenv()

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
DECIMAL_PLACES = int(os.getenv("DECIMAL_PLACES", "2"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Grading Engine API",
    description=(
        "Period and annual grades, performance levels, recoveries, "
        "achievement narratives and promotion decisions."
    ),
    version="1.0.0",
)

app.state.store = InMemoryFactStore()
app.state.locks = EnrollmentLocks()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_error_handlers(app)

# Register route modules
app.include_router(roster_router, prefix="/api/roster", tags=["Roster"])
app.include_router(grades_router, prefix="/api/grades", tags=["Grades"])
app.include_router(achievements_router, prefix="/api/achievements", tags=["Achievements"])
app.include_router(promotion_router, prefix="/api/promotion", tags=["Promotion"])
app.include_router(recompute_router, prefix="/api/recompute", tags=["Recompute"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    return {
        "school_name": SCHOOL_NAME,
        "decimal_places": DECIMAL_PLACES,
        "recompute_max_workers": default_max_workers(),
        "remote_config_store": bool(os.getenv("CONFIG_STORE_URL", "").strip()),
    }

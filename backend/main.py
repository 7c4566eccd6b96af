import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    DB_PATH,
    LOG_LEVEL,
)
from backend.errors import add_error_handlers
from backend.routers import attendance, auth, core, directory
from database.db import Database

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------------
# Store lifecycle
# -----------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    db = Database(DB_PATH).open()
    app.state.db = db
    try:
        yield
    finally:
        db.close()


app = FastAPI(title="Rollbook API", lifespan=lifespan)


# -----------------------------
# CORS
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)

add_error_handlers(app)

app.include_router(core.router)
app.include_router(auth.router)
app.include_router(directory.router)
app.include_router(attendance.router)

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from memoir.database import init_db
from memoir.routers.deletion import router as deletion_router
from memoir.routers.storage import router as storage_router
from memoir.routers.story_images import router as story_images_router
from memoir.schemas import UserCreate, UserRead, UserUpdate
from memoir.settings.config import settings
from memoir.users import auth_backend, fastapi_users

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info("Memoir API started")
    yield


app = FastAPI(title="Memoir API", lifespan=lifespan)

origins = [o.strip() for o in (settings.CORS_ORIGINS or "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(deletion_router)
app.include_router(storage_router)
app.include_router(story_images_router)

# Authentication Routes
app.include_router(
    fastapi_users.get_auth_router(auth_backend),
    prefix="/auth/jwt",
    tags=["auth"],
)
app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"],
)
app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"],
)


@app.get("/healthz")
async def healthz():
    return {"ok": True}

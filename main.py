from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel
import models.shift  # Ensure these models are known by SQLModel for table creation
import models.zone
from db.session import engine
from contextlib import asynccontextmanager
from api.shift_routes import router as shift_router
from api.zone_routes import router as zone_router
from api.analytics_routes import router as analytics_router
from api.tracking_routes import router as tracking_router
from api.user_routes import router as user_router
from core import config
from services.tracking import tracking_registry
import logging

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# This file is the control center of the whole application

# Construct the list of allowed origins, always including both dev and production
allowed_origins_list = [
    config.DEV_DOMAIN,
    config.PRODUCTION_DOMAIN,
    "http://localhost:3000",  # Additional fallback for React dev
    "http://127.0.0.1:5173",  # Additional fallback for Vite dev
]

# Remove any None values and duplicates
allowed_origins_list = list(set([origin for origin in allowed_origins_list if origin]))

logger.info(f"CORS: Allowing origins: {allowed_origins_list}")


# When We Start, Create the DB Tables if they don't exist
@asynccontextmanager
async def lifespan(app: FastAPI):

    SQLModel.metadata.create_all(engine)

    yield

    # Stop every live tracking session (and its pending auto clock-out)
    await tracking_registry.shutdown()


# Starts Fast API Up; Init
app = FastAPI(lifespan=lifespan)

# Allow requests from your React dev server & production
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins_list, # Use the constructed list
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(shift_router, prefix="/shifts", tags=["Shifts"])
app.include_router(zone_router, prefix="/zones", tags=["Zones", "Geofence"])
app.include_router(analytics_router, prefix="/analytics", tags=["Manager", "Analytics"])
app.include_router(tracking_router, prefix="/tracking", tags=["Tracking"])
app.include_router(user_router, prefix="/users", tags=["Users"])


@app.get("/health")
async def health():
    return {"status": "ok", "tracking_sessions": len(tracking_registry)}

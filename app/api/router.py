from fastapi import APIRouter

from app.api.routes.health import router as health_router
from app.api.routes.live import router as live_router
from app.api.routes.meetings import router as meetings_router
from app.api.routes.notifications import router as notifications_router
from app.api.routes.tasks import router as tasks_router
from app.api.routes.teams import router as teams_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Unversioned routes.
api_router.include_router(meetings_router)
api_router.include_router(tasks_router)
api_router.include_router(notifications_router)
api_router.include_router(teams_router)
api_router.include_router(live_router)

# Versioned routes for long-term API evolution.
v1_router.include_router(meetings_router)
v1_router.include_router(tasks_router)
v1_router.include_router(notifications_router)
v1_router.include_router(teams_router)
v1_router.include_router(live_router)
api_router.include_router(v1_router)

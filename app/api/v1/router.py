from fastapi import APIRouter
from .deliverables import router as deliverables_router
from .sprints import router as sprints_router
from .packages import router as packages_router

api_router = APIRouter()

# Include all sub-routers
api_router.include_router(deliverables_router, prefix="/deliverables", tags=["deliverables"])
api_router.include_router(sprints_router, prefix="/sprints", tags=["sprints"])
api_router.include_router(packages_router, prefix="/packages", tags=["packages"])

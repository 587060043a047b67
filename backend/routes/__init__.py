"""FastAPI API endpoints under /api.

Endpoint groups: simulation (action, skip turn with optional SSE), scenario
(discovery, action validation, summary), sessions (CRUD, share links),
settings (health, settings, check-connection).
"""

from fastapi import APIRouter

from .scenario import router as scenario_router
from .sessions import router as sessions_router
from .settings import router as settings_router
from .simulate import router as simulate_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(simulate_router)
router.include_router(scenario_router)
router.include_router(sessions_router)

"""API routers."""

from matchday.routes.automation import router as automation_router
from matchday.routes.core import router as core_router

__all__ = ["automation_router", "core_router"]

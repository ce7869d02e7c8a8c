from scienceai.api.routes.citations import router as citations_router
from scienceai.api.routes.status import router as status_router
from scienceai.api.routes.usage import router as usage_router

__all__ = ["citations_router", "status_router", "usage_router"]

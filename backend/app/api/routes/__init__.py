# API Routes
from .file_routes import router as file_router
from .file_routes import desk_router
from .extension_routes import router as extension_router
from .incentive_routes import router as incentive_router
from .holiday_routes import router as holiday_router

__all__ = [
    "file_router",
    "desk_router",
    "extension_router",
    "incentive_router",
    "holiday_router"
]

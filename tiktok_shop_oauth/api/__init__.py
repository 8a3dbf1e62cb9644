from .auth import router as auth_router
from .errors import install_error_handlers
from .orders import router as orders_router

__all__ = [
    "auth_router",
    "install_error_handlers",
    "orders_router",
]

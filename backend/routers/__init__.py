from .auth import router as auth_router
from .banks import router as banks_router
from .dashboard import router as dashboard_router

__all__ = [
    'auth_router',
    'banks_router',
    'dashboard_router',
]

# routers/__init__.py
from .webhooks import router as webhooks_router
from .admin_risk import router as admin_risk_router
from .admin_trust import router as admin_trust_router
from .admin_webhooks import router as admin_webhooks_router

__all__ = [
     "webhooks_router",
     "admin_risk_router",
     "admin_trust_router",
     "admin_webhooks_router",
]

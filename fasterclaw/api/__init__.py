from fasterclaw.api.auth import router as auth_router, get_current_user
from fasterclaw.api.instances import router as instances_router
from fasterclaw.api.chat import router as chat_router
from fasterclaw.api.integrations import router as integrations_router
from fasterclaw.api.proxy import router as proxy_router
from fasterclaw.api.billing import router as billing_router
from fasterclaw.api.health import router as health_router

__all__ = [
    "auth_router",
    "instances_router",
    "chat_router",
    "integrations_router",
    "proxy_router",
    "billing_router",
    "health_router",
    "get_current_user",
]

"""
FasterClaw Control Plane - Main Application Entry Point
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fasterclaw.config import settings
from fasterclaw.db import async_session_maker, init_db
from fasterclaw.errors import ServiceError
from fasterclaw.api import (
    auth_router,
    instances_router,
    chat_router,
    integrations_router,
    proxy_router,
    billing_router,
    health_router,
)
from fasterclaw.services.encryption import TokenCipher
from fasterclaw.services.integration_service import seed_integrations
from fasterclaw.services.oauth import build_oauth_providers
from fasterclaw.services.providers import DockerProvider, FlyClient, FlyProvider, ProviderRegistry
from fasterclaw.services.provisioning import ProvisioningQueue
from fasterclaw.services.scheduler import setup_scheduler
from fasterclaw.services.stripe_service import StripeBilling

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fasterclaw")


def build_registry(http: httpx.AsyncClient) -> ProviderRegistry:
    return ProviderRegistry(
        [
            DockerProvider(
                settings.openclaw_image,
                chat_timeout=settings.chat_timeout_seconds,
                max_output_bytes=settings.chat_max_output_bytes,
            ),
            FlyProvider(
                FlyClient(http, settings.fly_api_token, settings.fly_api_base, settings.fly_org_slug),
                settings.openclaw_image,
                chat_timeout=settings.chat_timeout_seconds,
            ),
        ],
        default=settings.instance_provider,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    logger.info("FasterClaw control plane starting up...")
    await init_db()

    cipher = TokenCipher(settings.encryption_key)
    if not cipher.self_test():
        raise RuntimeError("ENCRYPTION_KEY failed the encryption self-test")

    http = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
    registry = build_registry(http)
    queue = ProvisioningQueue(async_session_maker, registry, cipher, settings)

    app.state.cipher = cipher
    app.state.http = http
    app.state.registry = registry
    app.state.queue = queue
    app.state.billing = StripeBilling(settings)
    app.state.oauth_providers = build_oauth_providers(http, settings)

    async with async_session_maker() as db:
        await seed_integrations(db)

    recovered = await queue.recover()
    if recovered:
        logger.info("Resumed %d interrupted provisioning task(s)", recovered)

    scheduler = setup_scheduler(async_session_maker, registry, queue, cipher, settings)
    if scheduler is not None:
        scheduler.start()

    logger.info("Ready (default provider: %s)", registry.default)
    yield

    logger.info("Shutting down...")
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
    await queue.drain()
    await registry.aclose()
    await http.aclose()


app = FastAPI(
    title=settings.app_name,
    description="Control plane for OpenClaw AI-agent instances on Docker and Fly.io",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(auth_router, prefix=settings.api_prefix)
app.include_router(instances_router, prefix=settings.api_prefix)
app.include_router(chat_router, prefix=settings.api_prefix)
app.include_router(integrations_router, prefix=settings.api_prefix)
app.include_router(proxy_router, prefix=settings.api_prefix)
app.include_router(billing_router, prefix=settings.api_prefix)
app.include_router(health_router, prefix=settings.api_prefix)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fasterclaw.main:app",
        host="0.0.0.0",
        port=3001,
        reload=settings.debug,
    )

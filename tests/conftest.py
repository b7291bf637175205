"""
Shared fixtures: a throwaway SQLite database, fake instance provider, fake
Stripe and mocked HTTP, all injected through ``app.dependency_overrides``.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="fasterclaw-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["ENCRYPTION_KEY"] = "ab" * 32
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_ID_STARTER"] = "price_starter"
os.environ["STRIPE_PRICE_ID_PRO"] = "price_pro"
os.environ["STRIPE_PRICE_ID_ENTERPRISE"] = "price_enterprise"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["API_URL"] = "http://api.test"
os.environ["ANTHROPIC_API_KEY"] = "sk-ant-test"
os.environ["INSTANCE_PROVIDER"] = "docker"

from typing import Any, Dict, List, Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
import stripe  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from fasterclaw.api.deps import (  # noqa: E402
    get_billing,
    get_cipher,
    get_http,
    get_oauth_providers,
    get_queue,
    get_registry,
)
from fasterclaw.config import Settings, get_settings  # noqa: E402
from fasterclaw.db import async_session_maker, drop_db, init_db  # noqa: E402
from fasterclaw.main import app  # noqa: E402
from fasterclaw.services.auth_service import create_access_token, create_user  # noqa: E402
from fasterclaw.services.encryption import TokenCipher  # noqa: E402
from fasterclaw.services.integration_service import seed_integrations  # noqa: E402
from fasterclaw.services.oauth import build_oauth_providers  # noqa: E402
from fasterclaw.services.providers import (  # noqa: E402
    ChatReply,
    CreateInstanceConfig,
    InstanceProvider,
    ProviderError,
    ProviderRegistry,
    ProviderResult,
    ProviderTarget,
    UploadResult,
)
from fasterclaw.services.provisioning import ProvisioningQueue  # noqa: E402
from fasterclaw.services.stripe_service import StripeBilling  # noqa: E402


class FakeProvider(InstanceProvider):
    """In-memory stand-in for the Docker provider."""

    name = "docker"

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail_create: Optional[str] = None
        self.fail_start = False
        self.live_status = "RUNNING"
        self.reply = "Hello from OpenClaw"
        self.configured: List[Dict[str, Any]] = []
        self._counter = 0

    async def create_instance(self, config: CreateInstanceConfig) -> ProviderResult:
        self.calls.append(("create", config.instance_id))
        if self.fail_create:
            raise ProviderError(self.fail_create)
        self._counter += 1
        return ProviderResult(
            provider_id=f"container{self._counter:04d}",
            provider_app_id=f"openclaw-test-{self._counter}",
            ip_address="localhost",
            port=40000 + self._counter,
        )

    def instance_fields(self, result: ProviderResult) -> Dict[str, Any]:
        return {
            "docker_container_id": result.provider_id,
            "docker_port": result.port,
            "ip_address": result.ip_address,
        }

    def has_resources(self, target: ProviderTarget) -> bool:
        return bool(target.docker_container_id)

    async def start_instance(self, target: ProviderTarget) -> None:
        self.calls.append(("start", target.docker_container_id))
        if self.fail_start:
            raise ProviderError("Docker command failed: no such container")

    async def stop_instance(self, target: ProviderTarget) -> None:
        self.calls.append(("stop", target.docker_container_id))

    async def delete_instance(self, target: ProviderTarget) -> None:
        self.calls.append(("delete", target.docker_container_id))

    async def get_instance_status(self, target: ProviderTarget) -> str:
        self.calls.append(("status", target.docker_container_id))
        return self.live_status

    async def send_message(self, target: ProviderTarget, session_id: str, message: str) -> ChatReply:
        self.calls.append(("chat", session_id, message))
        return ChatReply(response=self.reply)

    async def upload_file(self, target: ProviderTarget, data: bytes, filename: str) -> UploadResult:
        self.calls.append(("upload", filename, len(data)))
        return UploadResult(file_path=f"/home/node/.openclaw/workspace/uploads/abc123-{filename}")

    async def configure_integration(self, target, instance_id, provider_name, proxy_url, instructions) -> None:
        self.configured.append({
            "instance_id": instance_id,
            "provider": provider_name,
            "proxy_url": proxy_url,
            "instructions": instructions,
        })

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]


INVOICE = {
    "id": "in_1",
    "object": "invoice",
    "number": "0001",
    "status": "paid",
    "amount_due": 2900,
    "amount_paid": 2900,
    "currency": "usd",
    "created": 1790000000,
}


class FakeStripeClient:
    """Only the ``StripeClient`` services the webhook and invoice paths read,
    answering with real ``stripe`` objects rather than dicts."""

    def __init__(self):
        self.subscriptions = _FakeSubscriptions()
        self.invoices = _FakeInvoices()


class _FakeSubscriptions:
    def __init__(self):
        self.live: Dict[str, Dict[str, Any]] = {}

    async def retrieve_async(self, subscription_id: str, params=None, options=None):
        if subscription_id not in self.live:
            raise stripe.InvalidRequestError(f"No such subscription: '{subscription_id}'", "id")
        return stripe.Subscription.construct_from(self.live[subscription_id], "sk_test")


class _FakeInvoices:
    def __init__(self):
        self.invoices: List[Dict[str, Any]] = [INVOICE]

    async def list_async(self, params=None, options=None):
        return stripe.ListObject.construct_from(
            {"object": "list", "url": "/v1/invoices", "has_more": False, "data": self.invoices},
            "sk_test",
        )


class FakeBilling(StripeBilling):
    """Real webhook verification and response parsing; canned Stripe API."""

    def __init__(self, settings: Settings):
        super().__init__(settings, client=FakeStripeClient())
        self.subscriptions: Dict[str, Dict[str, Any]] = self._client.subscriptions.live
        self.customers: List[str] = []
        self.checkouts: List[tuple] = []

    async def create_customer(self, user_id: str, email: str, name: Optional[str] = None) -> str:
        self.customers.append(user_id)
        return f"cus_{len(self.customers)}"

    async def create_checkout_session(self, customer_id: str, user_id: str, plan: str) -> str:
        self.checkouts.append((customer_id, user_id, plan))
        return f"https://checkout.stripe.test/{plan}"

    async def create_portal_session(self, customer_id: str) -> str:
        return f"https://billing.stripe.test/{customer_id}"


class MockUpstream:
    """Routes outbound HTTP (Slack, GitHub, Telegram, OAuth) to registered handlers."""

    def __init__(self):
        self.handlers: Dict[str, Any] = {}
        self.requests: List[httpx.Request] = []

    def on(self, url_prefix: str, handler) -> None:
        self.handlers[url_prefix] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        for prefix, handler in self.handlers.items():
            if url.startswith(prefix):
                return handler(request)
        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def settings() -> Settings:
    return get_settings().model_copy(update={"subscription_required": False})


@pytest.fixture
def cipher(settings) -> TokenCipher:
    return TokenCipher(settings.encryption_key)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(provider) -> ProviderRegistry:
    return ProviderRegistry([provider], default="docker")


@pytest.fixture
def queue(registry, cipher, settings) -> ProvisioningQueue:
    return ProvisioningQueue(async_session_maker, registry, cipher, settings)


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest_asyncio.fixture
async def http(upstream):
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
        yield client


@pytest.fixture
def billing(settings) -> FakeBilling:
    return FakeBilling(settings)


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def db_session():
    async with async_session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(settings, cipher, registry, queue, http, billing):
    """Async test client with every external dependency replaced."""
    async with async_session_maker() as db:
        await seed_integrations(db)

    oauth_providers = build_oauth_providers(http, settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_cipher] = lambda: cipher
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_http] = lambda: http
    app.dependency_overrides[get_billing] = lambda: billing
    app.dependency_overrides[get_oauth_providers] = lambda: oauth_providers

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await queue.drain()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def user(db_session):
    return await create_user(db_session, email="owner@example.com", password="password123", name="Owner")


@pytest_asyncio.fixture
async def other_user(db_session):
    return await create_user(db_session, email="other@example.com", password="password123", name="Other")


@pytest.fixture
def auth_headers(user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def other_headers(other_user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest_asyncio.fixture
async def running_instance(client, auth_headers, queue):
    """Create an instance and let provisioning finish."""
    response = await client.post("/instances", headers=auth_headers, json={"name": "Test Bot"})
    assert response.status_code == 201
    await queue.drain()
    response = await client.get(f"/instances/{response.json()['id']}", headers=auth_headers)
    assert response.json()["status"] == "RUNNING"
    return response.json()

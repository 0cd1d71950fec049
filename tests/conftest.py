import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

from nearu.domain.notifications.push import LoggingPushGateway
from nearu.infra.documents import InMemoryDocumentStore, set_store
from nearu.main import create_app
from nearu.services import build_services
from nearu.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from nearu.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id, which is only accepted in dev mode."""
	original_env = settings.environment
	original_store = settings.document_store
	settings.environment = "dev"
	settings.document_store = "memory"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.document_store = original_store
		set_store(None)


@pytest.fixture
def memory_store():
	return InMemoryDocumentStore()


@pytest.fixture
def push_gateway():
	return LoggingPushGateway()


@pytest_asyncio.fixture
async def services(memory_store, push_gateway):
	container = build_services(store=memory_store, gateway=push_gateway)
	try:
		yield container
	finally:
		await container.aclose()


@pytest_asyncio.fixture
async def api_client(services):
	app = create_app(services)
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client

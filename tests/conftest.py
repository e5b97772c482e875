"""
Configuración de pytest para tests
"""
import os
import tempfile
from dotenv import load_dotenv

load_dotenv()

# La configuración se lee al importar el paquete: fijarla antes
os.environ["STORE_BACKEND"] = "memory"
os.environ["APP_ENV"] = "dev"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ.setdefault("MEDIA_DIR", tempfile.mkdtemp(prefix="lumo-media-"))

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from lumo_messaging.db import UNIQUE_INDEXES
from lumo_messaging.main import app
from lumo_messaging.schemas.user import UserProfile
from lumo_messaging.security import create_access_token
from lumo_messaging.service import MessagingService, get_messaging
from lumo_messaging.store.memory import InMemoryDocumentStore
from lumo_messaging.store.mongo import MongoDocumentStore
from lumo_messaging.uploader import LocalBlobStore

TEST_USERS = [
    UserProfile(id="ana", name="Ana", avatar_url="https://cdn.test/ana.png", is_verified=True),
    UserProfile(id="luis", name="Luis"),
    UserProfile(id="eva", name="Eva"),
]


# Base de datos de test para el backend Mongo (replica set: los lotes usan transacciones)
TEST_DB_NAME = os.getenv("TEST_DB_NAME", "lumo_messaging_test")
TEST_MONGODB_URI = os.getenv("TEST_MONGODB_URI", os.getenv("MONGODB_URI", "mongodb://localhost:27017"))

BACKENDS = ["memory", "mongo"]


def pytest_generate_tests(metafunc):
    """Los tests marcados con all_backends se ejecutan contra cada almacén"""
    if "store" in metafunc.fixturenames and metafunc.definition.get_closest_marker("all_backends"):
        metafunc.parametrize("backend", BACKENDS, indirect=True)


@pytest.fixture
def backend(request):
    return getattr(request, "param", "memory")


@pytest.fixture
async def mongo_store():
    """Almacén Mongo sobre una base de datos de test limpia; se salta si no hay servidor"""
    client = AsyncIOMotorClient(TEST_MONGODB_URI, tz_aware=True, serverSelectionTimeoutMS=1000)
    try:
        hello = await client.admin.command("hello")
    except PyMongoError as e:
        client.close()
        pytest.skip(f"MongoDB de test no disponible: {e}")
    if "setName" not in hello:
        client.close()
        pytest.skip("MongoDB de test sin replica set (no admite transacciones)")

    await client.drop_database(TEST_DB_NAME)
    store = MongoDocumentStore(client, TEST_DB_NAME, timeout=5, unique_indexes=UNIQUE_INDEXES)
    await store.create_indexes()
    yield store
    await client.drop_database(TEST_DB_NAME)
    client.close()


@pytest.fixture
def store(backend, request):
    """Almacén vacío con los índices únicos del servicio (en memoria salvo parametrización)"""
    if backend == "mongo":
        return request.getfixturevalue("mongo_store")
    return InMemoryDocumentStore(timeout=5, unique_indexes=UNIQUE_INDEXES)


@pytest.fixture
def media_dir(tmp_path):
    return tmp_path / "media"


@pytest.fixture
def service(store, media_dir):
    """Servicio sin usuarios, para los tests que usan la API síncrona"""
    return MessagingService(store, blob_store=LocalBlobStore(str(media_dir), "/media"))


@pytest.fixture
async def messaging(service):
    """Servicio con tres perfiles registrados: ana, luis y eva"""
    for user in TEST_USERS:
        await service.identity.save_profile(user)
    return service


@pytest.fixture
def use_service():
    """Sustituye la dependencia get_messaging de la app por el servicio indicado"""
    def install(svc: MessagingService):
        async def override():
            return svc
        app.dependency_overrides[get_messaging] = override
    yield install
    app.dependency_overrides.pop(get_messaging, None)


@pytest.fixture
async def api(messaging, use_service):
    """Cliente HTTP asíncrono contra la app con el servicio de test"""
    use_service(messaging)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def client(service, use_service):
    """Cliente síncrono (necesario para WebSocket); los usuarios se crean vía /dev/users"""
    use_service(service)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth():
    """Cabeceras Authorization con un token para el usuario dado"""
    def headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return headers

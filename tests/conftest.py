import secrets
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Set

import bcrypt
import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.api.v1.messages.service import WhatsAppClient
from app.core.config import Settings
from app.core.container import ServiceContainer
from app.core.exceptions import DuplicateKeyError, NotFoundError, ServiceError, TransientIOError
from app.core.local_store import LocalStore
from app.core.remote import Document, DocumentStore, IdentityService
from app.core.schemas import School, Student
from app.main import create_app

USERS = "users"
SCHOOLS = "schools"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pw-123"
WHATSAPP_URL = "https://whatsapp.test/messages"


class FakeDocumentStore(DocumentStore):
    """In-memory document store with unique email/username indexes."""

    def __init__(self, database_id: str = "test-db") -> None:
        self.database_id = database_id
        self.collections: Dict[str, Dict[str, Document]] = {}
        self.fail_creates: Set[str] = set()
        self.unavailable = False

    def _docs(self, collection: str) -> Dict[str, Document]:
        return self.collections.setdefault(collection, {})

    def _check(self) -> None:
        if self.unavailable:
            raise TransientIOError("Remote store unreachable")

    async def create(self, collection: str, document_id: str, document: Document) -> Document:
        self._check()
        if document_id in self.fail_creates:
            raise TransientIOError(f"Remote store rejected {document_id}")
        docs = self._docs(collection)
        if document_id in docs:
            raise DuplicateKeyError("Document with the requested ID already exists")
        for other in docs.values():
            for attribute in ("email", "username"):
                value = document.get(attribute)
                if value and other.get(attribute) == value:
                    raise DuplicateKeyError(f"Document with the same {attribute} already exists")
        docs[document_id] = {**document, "$id": document_id}
        return dict(docs[document_id])

    async def get(self, collection: str, document_id: str) -> Document:
        self._check()
        docs = self._docs(collection)
        if document_id not in docs:
            raise NotFoundError("Document not found")
        return dict(docs[document_id])

    async def list(self, collection: str, filters=()) -> List[Document]:
        self._check()
        docs = list(self._docs(collection).values())
        for f in filters:
            if f.method == "equal":
                docs = [d for d in docs if d.get(f.attribute) in f.values]
        return [dict(d) for d in docs]

    async def update(self, collection: str, document_id: str, changes: Document) -> Document:
        self._check()
        docs = self._docs(collection)
        if document_id not in docs:
            raise NotFoundError("Document not found")
        docs[document_id] = {**docs[document_id], **changes}
        return dict(docs[document_id])

    async def delete(self, collection: str, document_id: str) -> None:
        self._check()
        if self._docs(collection).pop(document_id, None) is None:
            raise NotFoundError("Document not found")


class FakeIdentityService(IdentityService):
    """Password identities with one session per token."""

    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {}
        self.sessions: Dict[str, Dict[str, Any]] = {}

    def register(self, user_id: str, email: str, password: str, name: str = "") -> None:
        self.users[email.lower()] = {"$id": user_id, "email": email, "name": name, "password": password}

    async def create_session(self, identifier: str, secret: str) -> Dict[str, Any]:
        user = self.users.get(identifier.lower())
        if user is None or user["password"] != secret:
            raise ServiceError("Invalid credentials. Please check the email and password.", 401)
        token = secrets.token_hex(16)
        self.sessions[token] = user
        return {"userId": user["$id"], "secret": token}

    def _user(self, session: str) -> Dict[str, Any]:
        user = self.sessions.get(session)
        if user is None:
            raise ServiceError("User (role: guests) missing scope (account)", 401)
        return user

    async def get_current_user(self, session: str) -> Dict[str, Any]:
        return {k: v for k, v in self._user(session).items() if k != "password"}

    async def delete_session(self, session: str) -> None:
        self._user(session)
        del self.sessions[session]


class WhatsAppRecorder:
    """httpx mock transport handler capturing WhatsApp API calls."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"messages": [{"id": "wamid.test"}]})


@pytest.fixture()
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        appwrite_database_id="test-db",
        appwrite_users_collection_id=USERS,
        appwrite_schools_collection_id=SCHOOLS,
        admin_email=ADMIN_EMAIL,
        whatsapp_api_url=WHATSAPP_URL,
        remote_timeout_seconds=2.0,
    )


@pytest.fixture()
def remote() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture()
def identity() -> FakeIdentityService:
    return FakeIdentityService()


@pytest.fixture()
def whatsapp_recorder() -> WhatsAppRecorder:
    return WhatsAppRecorder()


@pytest.fixture()
def whatsapp(whatsapp_recorder: WhatsAppRecorder) -> WhatsAppClient:
    transport = httpx.MockTransport(whatsapp_recorder)
    return WhatsAppClient(WHATSAPP_URL, client=httpx.AsyncClient(transport=transport))


@pytest.fixture()
async def container(
    test_settings: Settings,
    remote: FakeDocumentStore,
    identity: FakeIdentityService,
    whatsapp: WhatsAppClient,
) -> AsyncGenerator[ServiceContainer, None]:
    """Fully wired services over a fresh SQLite file and in-memory remote collaborators."""
    services = await ServiceContainer.build(test_settings, remote=remote, identity=identity, whatsapp=whatsapp)
    yield services
    await services.aclose()


@pytest.fixture()
def store(container: ServiceContainer) -> LocalStore:
    return container.store


@pytest.fixture()
async def school(store: LocalStore) -> School:
    return await store.save_school({"name": "مدرسة النور", "email": "info@alnoor.om", "phone": "+968 24000000"})


@pytest.fixture()
async def student(store: LocalStore, school: School) -> Student:
    return await store.save_student(
        {
            "name": "Ali",
            "student_number": "S1001",
            "grade": "الصف الأول",
            "parent_name": "Salim",
            "phone": "+968 95123456",
            "school_id": school.id,
        }
    )



@asynccontextmanager
async def api_client(container: ServiceContainer) -> AsyncIterator[AsyncClient]:
    """Async HTTP client bound to a FastAPI app over ``container``."""
    app = create_app(container.settings)
    app.state.container = container
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def sign_in(ac: AsyncClient, identifier: str, password: str) -> Dict[str, Any]:
    """Log in through the API and send the session token on every later request."""
    response = await ac.post("/api/v1/auth/login", json={"identifier": identifier, "password": password})
    assert response.status_code == 200, response.text
    ac.headers["Authorization"] = f"Bearer {response.json()['access_token']}"
    return response.json()["user"]


@pytest.fixture()
async def anon_client(container: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    async with api_client(container) as ac:
        yield ac


@pytest.fixture()
async def client(container: ServiceContainer, identity: FakeIdentityService) -> AsyncGenerator[AsyncClient, None]:
    """Client signed in as the configured administrator."""
    identity.register("admin-1", ADMIN_EMAIL, ADMIN_PASSWORD, "Administrator")
    async with api_client(container) as ac:
        await sign_in(ac, ADMIN_EMAIL, ADMIN_PASSWORD)
        yield ac


def verify_password(plain: str, password_hash: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), password_hash.encode("utf-8"))

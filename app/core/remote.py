"""Remote collaborators: the account/document store and the identity (session) service.

The core depends only on ``DocumentStore`` and ``IdentityService``; the Appwrite
classes are their HTTP implementations.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any, Awaitable, Dict, Iterable, List, Optional, TypeVar

import httpx
from fastapi import status

from app.core.exceptions import DuplicateKeyError, NotFoundError, ServiceError, TransientIOError

logger = logging.getLogger(__name__)

Document = Dict[str, Any]

PAGE_SIZE = 100
SESSION_HEADER = "X-Appwrite-Session"

R = TypeVar("R")


async def with_timeout(awaitable: Awaitable[R], timeout: float) -> R:
    """Await a remote call, converting a timeout into TransientIOError."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise TransientIOError("Remote store timed out") from e


@dataclass(frozen=True)
class Filter:
    method: str
    attribute: Optional[str] = None
    values: List[Any] = field(default_factory=list)

    @classmethod
    def equal(cls, attribute: str, value: Any) -> "Filter":
        return cls("equal", attribute, [value])

    @classmethod
    def order_desc(cls, attribute: str) -> "Filter":
        return cls("orderDesc", attribute)

    def to_query(self) -> str:
        payload: Dict[str, Any] = {"method": self.method}
        if self.attribute is not None:
            payload["attribute"] = self.attribute
        if self.values:
            payload["values"] = self.values
        return json.dumps(payload)


class DocumentStore(ABC):
    """Remote key-document store. Documents carry their key under ``$id``."""

    database_id: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.database_id)

    @abstractmethod
    async def create(self, collection: str, document_id: str, document: Document) -> Document:
        """Create a document; raises DuplicateKeyError on id or unique-index collision."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Document:
        """Fetch a document; raises NotFoundError."""

    @abstractmethod
    async def list(self, collection: str, filters: Iterable[Filter] = ()) -> List[Document]:
        ...

    @abstractmethod
    async def update(self, collection: str, document_id: str, changes: Document) -> Document:
        ...

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        ...

    async def clear(self, collection: str, keep_emails: Iterable[str] = ()) -> int:
        """Delete every document except those whose email is in ``keep_emails``. Returns the count deleted."""
        keep = {e.lower() for e in keep_emails if e}
        deleted = 0
        for document in await self.list(collection):
            if str(document.get("email") or "").lower() in keep:
                continue
            try:
                await self.delete(collection, document["$id"])
                deleted += 1
            except ServiceError as e:
                logger.error("Error deleting document %s from %s: %s", document.get("$id"), collection, e.message)
        return deleted


class IdentityService(ABC):
    """Email/password sessions. Each caller holds its own session secret; the service keeps none."""

    @abstractmethod
    async def create_session(self, identifier: str, secret: str) -> Dict[str, Any]:
        """Open a session; the returned document carries the session ``secret``."""

    @abstractmethod
    async def get_current_user(self, session: str) -> Dict[str, Any]:
        """Return the user owning ``session``; raises a 401 ServiceError when it is not valid."""

    @abstractmethod
    async def delete_session(self, session: str) -> None:
        ...


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.status_code < 400:
        return
    try:
        message = response.json().get("message") or response.text
    except ValueError:
        message = response.text
    if response.status_code == status.HTTP_404_NOT_FOUND:
        raise NotFoundError(f"{what} not found")
    if response.status_code == status.HTTP_409_CONFLICT:
        raise DuplicateKeyError(message or f"{what} already exists")
    if response.status_code == status.HTTP_401_UNAUTHORIZED:
        raise ServiceError(message or "Not authenticated", status.HTTP_401_UNAUTHORIZED)
    if response.status_code >= 500:
        raise TransientIOError(f"Remote store error ({response.status_code}): {message}")
    raise ServiceError(f"Remote store rejected request: {message}", status.HTTP_502_BAD_GATEWAY)


class _AppwriteClient:
    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"X-Appwrite-Project": project_id, "Content-Type": "application/json"}
        if api_key:
            headers["X-Appwrite-Key"] = api_key
        self._project_id = project_id
        self._client = client or httpx.AsyncClient(base_url=endpoint.rstrip("/"), timeout=timeout)
        self._client.headers.update(headers)

    async def _request(self, method: str, path: str, what: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientIOError(f"Remote store timed out on {method} {path}") from e
        except httpx.HTTPError as e:
            raise TransientIOError(f"Remote store unreachable: {e}") from e
        _raise_for_status(response, what)
        return response

    async def aclose(self) -> None:
        await self._client.aclose()


class AppwriteDocumentStore(_AppwriteClient, DocumentStore):
    def __init__(self, database_id: str, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.database_id = database_id

    def _documents(self, collection: str) -> str:
        return f"/databases/{self.database_id}/collections/{collection}/documents"

    async def create(self, collection: str, document_id: str, document: Document) -> Document:
        response = await self._request(
            "POST",
            self._documents(collection),
            "Document",
            json={"documentId": document_id, "data": document},
        )
        return response.json()

    async def get(self, collection: str, document_id: str) -> Document:
        response = await self._request("GET", f"{self._documents(collection)}/{document_id}", "Document")
        return response.json()

    async def list(self, collection: str, filters: Iterable[Filter] = ()) -> List[Document]:
        queries = [f.to_query() for f in filters]
        documents: List[Document] = []
        offset = 0
        while True:
            page_queries = queries + [
                Filter("limit", values=[PAGE_SIZE]).to_query(),
                Filter("offset", values=[offset]).to_query(),
            ]
            response = await self._request(
                "GET",
                self._documents(collection),
                "Collection",
                params=[("queries[]", q) for q in page_queries],
            )
            page = response.json().get("documents", [])
            documents.extend(page)
            if len(page) < PAGE_SIZE:
                return documents
            offset += PAGE_SIZE

    async def update(self, collection: str, document_id: str, changes: Document) -> Document:
        response = await self._request(
            "PATCH",
            f"{self._documents(collection)}/{document_id}",
            "Document",
            json={"data": changes},
        )
        return response.json()

    async def delete(self, collection: str, document_id: str) -> None:
        await self._request("DELETE", f"{self._documents(collection)}/{document_id}", "Document")


class AppwriteIdentityService(_AppwriteClient, IdentityService):
    """Email/password sessions, passed per request in the ``X-Appwrite-Session`` header.

    The underlying client refuses cookies so one caller's session never leaks into another's request.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client.cookies = CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))

    async def create_session(self, identifier: str, secret: str) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            "/account/sessions/email",
            "Session",
            json={"email": identifier, "password": secret},
        )
        session = response.json()
        if not session.get("secret"):
            session["secret"] = response.cookies.get(f"a_session_{self._project_id}") or ""
        return session

    async def get_current_user(self, session: str) -> Dict[str, Any]:
        response = await self._request("GET", "/account", "Session", headers={SESSION_HEADER: session})
        return response.json()

    async def delete_session(self, session: str) -> None:
        await self._request("DELETE", "/account/sessions/current", "Session", headers={SESSION_HEADER: session})

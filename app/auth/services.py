import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import status
from pydantic import BaseModel, Field

from app.core.enums import AccountRole
from app.core.exceptions import ServiceError
from app.core.local_store import LocalStore
from app.core.reconciler import AccountReconciler, account_to_document, document_to_account
from app.core.remote import Document, DocumentStore, Filter, IdentityService, with_timeout
from app.core.schemas import Account

logger = logging.getLogger(__name__)


class SessionUser(BaseModel):
    id: str
    name: str = ""
    email: str
    username: str = ""
    role: AccountRole
    school_id: Optional[str] = None
    school_name: Optional[str] = None
    school_logo: Optional[str] = None
    grade_levels: List[str] = Field(default_factory=list)


class AuthSession(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: SessionUser


class AuthService:
    """Session login against the identity service, resolved to a cached account."""

    def __init__(
        self,
        store: LocalStore,
        identity: IdentityService,
        remote: DocumentStore,
        reconciler: AccountReconciler,
        collection_id: str,
        admin_email: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._identity = identity
        self._remote = remote
        self._reconciler = reconciler
        self._collection_id = collection_id
        self._admin_email = (admin_email or "").lower()
        self._timeout = timeout

    def _is_admin(self, email: str) -> bool:
        return bool(self._admin_email) and email.lower() == self._admin_email

    def _session_user(self, account: Account) -> SessionUser:
        fields = account.model_dump(exclude={"password_hash", "last_login", "created_at"})
        if self._is_admin(account.email):
            fields["role"] = AccountRole.ADMIN
        return SessionUser(**fields)

    async def _find_remote(self, email: str, identifier: str) -> Optional[Document]:
        for attribute, value in (("email", email), ("username", identifier)):
            if not value:
                continue
            documents = await with_timeout(
                self._remote.list(self._collection_id, [Filter.equal(attribute, value)]), self._timeout
            )
            if documents:
                return documents[0]
        return None

    async def _resolve_account(self, user: Dict[str, Any], identifier: str) -> Account:
        email = user.get("email") or identifier
        cached = await self._store.find_account(email=email, username=identifier)
        now = datetime.now(timezone.utc)

        account: Optional[Account] = None
        if self._reconciler.is_configured:
            try:
                document = await self._find_remote(email, identifier)
                if document is None:
                    if cached is not None:
                        # A cached account that never reached the remote store keeps its id
                        account = cached
                    else:
                        account = Account(
                            id=user.get("$id") or email,
                            name=user.get("name") or "",
                            email=email,
                            username=email,
                            role=AccountRole.ADMIN if self._is_admin(email) else AccountRole.SCHOOL_ADMIN,
                            created_at=now,
                        )
                    await with_timeout(
                        self._remote.create(self._collection_id, account.id, account_to_document(account)),
                        self._timeout,
                    )
                else:
                    account = document_to_account(document, cached)
                await with_timeout(
                    self._remote.update(self._collection_id, account.id, {"lastLogin": now.isoformat()}),
                    self._timeout,
                )
            except ServiceError as e:
                logger.warning("Could not resolve remote account for %s, using local cache: %s", email, e.message)

        if account is None:
            account = cached or Account(
                id=user.get("$id") or email,
                name=user.get("name") or "",
                email=email,
                username=email,
                role=AccountRole.ADMIN if self._is_admin(email) else AccountRole.SCHOOL_ADMIN,
                created_at=now,
            )
        if cached is not None and account.password_hash is None:
            account = account.model_copy(update={"password_hash": cached.password_hash})
        account = account.model_copy(update={"last_login": now})
        await self._store.merge_accounts([account])
        return account

    async def login(self, identifier: str, secret: str) -> AuthSession:
        token = ""
        try:
            session = await with_timeout(self._identity.create_session(identifier, secret), self._timeout)
            token = session.get("secret") or ""
            if not token:
                raise ServiceError("Identity service returned no session secret", status.HTTP_502_BAD_GATEWAY)
            user = await with_timeout(self._identity.get_current_user(token), self._timeout)
            await self._reconciler.sync()
            account = await self._resolve_account(user, identifier)
        except ServiceError:
            if token:
                try:
                    await self._identity.delete_session(token)
                except ServiceError as e:
                    logger.debug("Could not clean up session after failed login: %s", e.message)
            raise
        logger.info("User %s logged in", account.email)
        return AuthSession(access_token=token, user=self._session_user(account))

    async def check_auth(self, token: str, refresh: bool = True) -> Optional[SessionUser]:
        """The user owning ``token``, or None. ``refresh`` also runs an account sync first."""
        if not token:
            return None
        try:
            user = await with_timeout(self._identity.get_current_user(token), self._timeout)
        except ServiceError:
            return None
        if refresh:
            await self._reconciler.sync()
        email = user.get("email") or ""
        account = await self._store.find_account(email=email)
        if account is None:
            account = Account(id=user.get("$id") or email, name=user.get("name") or "", email=email, username=email)
        return self._session_user(account)

    async def logout(self, token: str) -> None:
        try:
            await with_timeout(self._identity.delete_session(token), self._timeout)
        except ServiceError as e:
            logger.warning("Error during session deletion: %s", e.message)

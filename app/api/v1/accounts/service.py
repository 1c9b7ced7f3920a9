import logging
from typing import Any, Dict, List, Optional

from app.core.enums import AccountRole
from app.core.exceptions import DuplicateKeyError, NotFoundError, ReferenceNotFoundError, ServiceError
from app.core.local_store import LocalStore
from app.core.reconciler import AccountReconciler, account_to_document
from app.core.remote import DocumentStore, Filter, with_timeout
from app.core.schemas import Account

logger = logging.getLogger(__name__)


class AccountService:
    """Account management across the local cache and the remote account store.

    The local cache is written first; the remote store is kept in step on a
    best-effort basis and ``AccountReconciler.sync`` runs after every create or
    update so the cache reflects what the remote store confirmed.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: DocumentStore,
        reconciler: AccountReconciler,
        collection_id: str,
        timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._remote = remote
        self._reconciler = reconciler
        self._collection_id = collection_id
        self._timeout = timeout

    async def list_accounts(self, school_id: Optional[str] = None) -> List[Account]:
        return await self._store.get_accounts(school_id)

    async def get_account(self, account_id: str) -> Account:
        account = await self._store.get_account(account_id)
        if account is None:
            raise NotFoundError("Account not found")
        return account

    async def _ensure_unique_remotely(self, email: str, username: Optional[str]) -> None:
        checks = [("email", email, "An account with this email already exists")]
        if username:
            checks.append(("username", username, "An account with this username already exists"))
        for attribute, value, message in checks:
            try:
                found = await with_timeout(
                    self._remote.list(self._collection_id, [Filter.equal(attribute, value)]), self._timeout
                )
            except ServiceError as e:
                logger.warning("Could not check remote %s uniqueness: %s", attribute, e.message)
                return
            if found:
                raise DuplicateKeyError(message)

    async def create_account(
        self,
        email: str,
        password: str,
        name: str,
        username: Optional[str] = None,
        role: AccountRole = AccountRole.SCHOOL_ADMIN,
        school_id: Optional[str] = None,
        grade_levels: Optional[List[str]] = None,
    ) -> Account:
        if await self._store.find_account(email=email, username=username):
            raise DuplicateKeyError("An account with this email or username already exists")
        if school_id and await self._store.get_school(school_id) is None:
            raise ReferenceNotFoundError("School not found; create the school first")
        if self._reconciler.is_configured:
            await self._ensure_unique_remotely(email, username)

        account = await self._store.save_account(
            {
                "email": email,
                "password": password,
                "name": name,
                "username": username or email,
                "role": role,
                "school_id": school_id,
                "grade_levels": grade_levels or [],
            }
        )

        if self._reconciler.is_configured:
            try:
                await with_timeout(
                    self._remote.create(self._collection_id, account.id, account_to_document(account)),
                    self._timeout,
                )
            except DuplicateKeyError:
                await self._store.delete_account(account.id)
                raise
            except ServiceError as e:
                logger.warning("Account %s saved locally only: %s", account.email, e.message)

        await self._reconciler.sync()
        return await self._store.get_account(account.id) or account

    async def update_account(self, account_id: str, changes: Dict[str, Any]) -> Account:
        await self.get_account(account_id)
        account = await self._store.save_account({**changes, "id": account_id})

        if self._reconciler.is_configured:
            document = account_to_document(account)
            document.pop("createdAt", None)
            try:
                await with_timeout(self._remote.update(self._collection_id, account_id, document), self._timeout)
            except ServiceError as e:
                logger.warning("Could not update remote account %s: %s", account_id, e.message)

        await self._reconciler.sync()
        return await self._store.get_account(account_id) or account

    async def delete_account(self, account_id: str) -> None:
        await self.get_account(account_id)
        if self._reconciler.is_configured:
            try:
                await with_timeout(self._remote.delete(self._collection_id, account_id), self._timeout)
            except NotFoundError:
                pass
            except ServiceError as e:
                logger.warning("Could not delete remote account %s: %s", account_id, e.message)
        await self._store.delete_account(account_id)

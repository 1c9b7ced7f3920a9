"""Account reconciliation between the local account cache and the remote account store.

``check_sync_status`` and ``fix`` compare the two tiers by identifier only.
``sync`` additionally matches by email (case-insensitive) so that an account
already present remotely under another identifier is not created twice.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, List, Optional, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.enums import AccountRole
from app.core.exceptions import ConfigurationError, DuplicateKeyError, ServiceError
from app.core.local_store import LocalStore
from app.core.remote import Document, DocumentStore, Filter, with_timeout
from app.core.schemas import Account

logger = logging.getLogger(__name__)

R = TypeVar("R")


class SyncStatus(BaseModel):
    total_local: int = 0
    total_remote: int = 0
    local_only: List[Account] = Field(default_factory=list)
    remote_only: List[Account] = Field(default_factory=list)
    is_synced: bool = False
    error: Optional[str] = None


class SyncIssue(BaseModel):
    type: str  # local_to_remote | remote_to_local | status
    id: Optional[str] = None
    error: str


class FixReport(BaseModel):
    fixed_local_accounts: List[str] = Field(default_factory=list)
    fixed_remote_accounts: List[str] = Field(default_factory=list)
    errors: List[SyncIssue] = Field(default_factory=list)
    is_synced: bool = False


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def account_to_document(account: Account) -> Document:
    """Remote document body for an account. The password hash is never sent."""
    return {
        "name": account.name,
        "full_name": account.name,
        "email": account.email,
        "username": account.username or account.email,
        "role": account.role.value,
        "schoolId": account.school_id or "",
        "schoolName": account.school_name or "",
        "gradeLevels": account.grade_levels,
        "createdAt": _iso(account.created_at or datetime.now(timezone.utc)),
        "lastLogin": _iso(account.last_login),
    }


def document_to_account(document: Document, cached: Optional[Account] = None) -> Account:
    role = document.get("role")
    if role not in {r.value for r in AccountRole}:
        role = AccountRole.SCHOOL_ADMIN.value
    return Account(
        id=document["$id"],
        name=document.get("name") or document.get("full_name") or "",
        email=document.get("email") or "",
        username=document.get("username") or document.get("email") or "",
        role=role,
        school_id=document.get("schoolId") or None,
        school_name=document.get("schoolName") or None,
        school_logo=document.get("schoolLogo") or (cached.school_logo if cached else None),
        grade_levels=document.get("gradeLevels") or [],
        created_at=document.get("createdAt") or None,
        last_login=document.get("lastLogin") or None,
        password_hash=cached.password_hash if cached else None,
    )


class AccountReconciler:
    def __init__(
        self,
        store: LocalStore,
        remote: DocumentStore,
        collection_id: str,
        timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._remote = remote
        self._collection_id = collection_id
        self._timeout = timeout

    @property
    def is_configured(self) -> bool:
        return self._remote.is_configured and bool(self._collection_id)

    def _ensure_configured(self) -> None:
        if not self.is_configured:
            raise ConfigurationError("Remote account store is not configured (database or collection id missing)")

    async def _call(self, awaitable: Awaitable[R]) -> R:
        return await with_timeout(awaitable, self._timeout)

    async def _remote_accounts(self) -> List[Account]:
        documents = await self._call(self._remote.list(self._collection_id, [Filter.order_desc("createdAt")]))
        accounts: List[Account] = []
        for document in documents:
            try:
                accounts.append(document_to_account(document))
            except (KeyError, PydanticValidationError) as e:
                logger.warning("Skipping unreadable remote account %s: %s", document.get("$id"), e)
        return accounts

    async def check_sync_status(self) -> SyncStatus:
        self._ensure_configured()
        local_accounts = await self._store.get_accounts()
        try:
            remote_accounts = await self._remote_accounts()
        except ServiceError as e:
            logger.error("Error checking account sync status: %s", e.message)
            return SyncStatus(total_local=len(local_accounts), error=e.message)

        remote_ids = {a.id for a in remote_accounts}
        local_ids = {a.id for a in local_accounts}
        local_only = [a for a in local_accounts if a.id not in remote_ids]
        remote_only = [a for a in remote_accounts if a.id not in local_ids]
        return SyncStatus(
            total_local=len(local_accounts),
            total_remote=len(remote_accounts),
            local_only=local_only,
            remote_only=remote_only,
            is_synced=not local_only and not remote_only,
        )

    async def fix(self) -> FixReport:
        """Push local-only accounts to the remote store and pull remote-only accounts into the cache."""
        status = await self.check_sync_status()
        report = FixReport()
        if status.error:
            report.errors.append(SyncIssue(type="status", error=status.error))
            return report

        for account in status.local_only:
            try:
                await self._call(
                    self._remote.create(self._collection_id, account.id, account_to_document(account))
                )
                report.fixed_local_accounts.append(account.id)
            except ServiceError as e:
                logger.error("Error creating local account %s remotely: %s", account.id, e.message)
                report.errors.append(SyncIssue(type="local_to_remote", id=account.id, error=e.message))

        pulled: List[Account] = []
        for remote_account in status.remote_only:
            try:
                document = await self._call(self._remote.get(self._collection_id, remote_account.id))
                pulled.append(document_to_account(document))
                report.fixed_remote_accounts.append(remote_account.id)
            except ServiceError as e:
                logger.error("Error fetching remote account %s: %s", remote_account.id, e.message)
                report.errors.append(SyncIssue(type="remote_to_local", id=remote_account.id, error=e.message))
        if pulled:
            await self._store.merge_accounts(pulled)

        final = await self.check_sync_status()
        report.is_synced = final.is_synced
        return report

    async def sync(self) -> bool:
        """Best-effort refresh of the account cache from the remote store. Never raises."""
        if not self.is_configured:
            logger.info("Remote store not configured, skipping account synchronization")
            return False
        try:
            remote_accounts = await self._remote_accounts()
            local_accounts = await self._store.get_accounts()
            remote_ids = {a.id for a in remote_accounts}
            remote_emails = {a.email.lower() for a in remote_accounts if a.email}

            superseded: List[str] = []
            pending = 0
            created = 0
            for account in local_accounts:
                if account.id in remote_ids:
                    continue
                if not account.email:
                    logger.warning("Keeping local account %s without email out of sync", account.id)
                    pending += 1
                    continue
                if account.email.lower() in remote_emails:
                    logger.info("Account %s already exists remotely under another id", account.email)
                    superseded.append(account.id)
                    continue
                try:
                    await self._call(
                        self._remote.create(self._collection_id, account.id, account_to_document(account))
                    )
                    created += 1
                except DuplicateKeyError:
                    logger.warning("Remote store rejected account %s as duplicate", account.email)
                    pending += 1
                except ServiceError as e:
                    logger.error("Error creating local account %s remotely: %s", account.id, e.message)
                    pending += 1

            if created:
                remote_accounts = await self._remote_accounts()

            # Accounts saved while the remote calls were in flight survive this write
            await self._store.reconcile_accounts(remote_accounts, superseded)
            logger.info(
                "Synchronized %d accounts (%d created remotely, %d pending)", len(remote_accounts), created, pending
            )
            return True
        except ServiceError as e:
            logger.error("Error synchronizing accounts: %s", e.message)
            return False

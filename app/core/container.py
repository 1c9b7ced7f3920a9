import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.api.v1.accounts.service import AccountService
from app.api.v1.imports.service import ImportMerger
from app.api.v1.messages.service import MessagingService, WhatsAppClient
from app.auth.services import AuthService
from app.core.config import Settings
from app.core.local_store import LocalStore
from app.core.reconciler import AccountReconciler
from app.core.remote import (
    AppwriteDocumentStore,
    AppwriteIdentityService,
    DocumentStore,
    IdentityService,
    with_timeout,
)
from app.db.session import create_engine, create_session_factory, init_models

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived collaborator, built once at startup and closed at shutdown."""

    settings: Settings
    engine: AsyncEngine
    store: LocalStore
    remote: DocumentStore
    identity: IdentityService
    reconciler: AccountReconciler
    accounts: AccountService
    auth: AuthService
    importer: ImportMerger
    whatsapp: WhatsAppClient
    messaging: MessagingService

    @classmethod
    async def build(
        cls,
        settings: Settings,
        remote: Optional[DocumentStore] = None,
        identity: Optional[IdentityService] = None,
        whatsapp: Optional[WhatsAppClient] = None,
    ) -> "ServiceContainer":
        engine = create_engine(settings.database_url)
        await init_models(engine)
        store = LocalStore(create_session_factory(engine))
        await store.initialize()

        timeout = settings.remote_timeout_seconds
        if remote is None:
            remote = AppwriteDocumentStore(
                settings.appwrite_database_id,
                settings.appwrite_endpoint,
                settings.appwrite_project_id,
                api_key=settings.appwrite_api_key,
                timeout=timeout,
            )
        if identity is None:
            identity = AppwriteIdentityService(
                settings.appwrite_endpoint, settings.appwrite_project_id, timeout=timeout
            )
        if whatsapp is None:
            whatsapp = WhatsAppClient(
                settings.whatsapp_api_url,
                settings.whatsapp_api_token,
                phone_prefix=settings.phone_prefix,
                timeout=timeout,
            )

        users = settings.appwrite_users_collection_id
        reconciler = AccountReconciler(store, remote, users, timeout)
        return cls(
            settings=settings,
            engine=engine,
            store=store,
            remote=remote,
            identity=identity,
            reconciler=reconciler,
            accounts=AccountService(store, remote, reconciler, users, timeout),
            auth=AuthService(store, identity, remote, reconciler, users, settings.admin_email, timeout),
            importer=ImportMerger(store, settings.phone_prefix),
            whatsapp=whatsapp,
            messaging=MessagingService(store, whatsapp),
        )

    async def clean_remote(self) -> None:
        """Delete remote accounts (except the administrator) and schools."""
        if not self.remote.is_configured:
            return
        keep = [self.settings.admin_email] if self.settings.admin_email else []
        for collection in (self.settings.appwrite_users_collection_id, self.settings.appwrite_schools_collection_id):
            if not collection:
                continue
            deleted = await with_timeout(
                self.remote.clear(collection, keep_emails=keep), self.settings.remote_timeout_seconds * 10
            )
            logger.info("Deleted %d documents from remote collection %s", deleted, collection)

    async def reset(self) -> None:
        await self.store.reset_all(remote_cleanup=self.clean_remote)

    async def aclose(self) -> None:
        for client in (self.remote, self.identity, self.whatsapp):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
        await self.engine.dispose()

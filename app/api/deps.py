from fastapi import Depends, Request

from app.api.v1.accounts.service import AccountService
from app.api.v1.imports.service import ImportMerger
from app.api.v1.messages.service import MessagingService
from app.auth.services import AuthService
from app.core.container import ServiceContainer
from app.core.local_store import LocalStore
from app.core.reconciler import AccountReconciler


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_store(container: ServiceContainer = Depends(get_container)) -> LocalStore:
    return container.store


def get_reconciler(container: ServiceContainer = Depends(get_container)) -> AccountReconciler:
    return container.reconciler


def get_account_service(container: ServiceContainer = Depends(get_container)) -> AccountService:
    return container.accounts


def get_auth_service(container: ServiceContainer = Depends(get_container)) -> AuthService:
    return container.auth


def get_importer(container: ServiceContainer = Depends(get_container)) -> ImportMerger:
    return container.importer


def get_messaging(container: ServiceContainer = Depends(get_container)) -> MessagingService:
    return container.messaging

import asyncio

import pytest

from app.core.exceptions import ConfigurationError
from app.core.local_store import LocalStore
from app.core.reconciler import AccountReconciler, account_to_document
from app.core.schemas import Account
from tests.conftest import USERS, FakeDocumentStore


def _remote_doc(email: str, name: str = "", role: str = "schoolAdmin") -> dict:
    return {
        "name": name,
        "full_name": name,
        "email": email,
        "username": email.split("@")[0],
        "role": role,
        "schoolId": "",
        "schoolName": "",
        "gradeLevels": [],
        "createdAt": "2024-01-01T00:00:00+00:00",
        "lastLogin": None,
    }


async def _seed_local(store: LocalStore, *emails: str) -> list:
    return [
        await store.save_account({"email": email, "username": email.split("@")[0], "password": "secret123", "name": email})
        for email in emails
    ]


@pytest.mark.asyncio
async def test_check_sync_status_requires_configuration(store: LocalStore) -> None:
    reconciler = AccountReconciler(store, FakeDocumentStore(database_id=""), USERS)
    with pytest.raises(ConfigurationError):
        await reconciler.check_sync_status()

    reconciler = AccountReconciler(store, FakeDocumentStore(), "")
    with pytest.raises(ConfigurationError):
        await reconciler.fix()


@pytest.mark.asyncio
async def test_disjoint_sets_are_reported_and_fixed(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    local = await _seed_local(store, "l1@school.om", "l2@school.om", "l3@school.om")
    await remote.create(USERS, "r1", _remote_doc("r1@school.om", "Remote One"))
    await remote.create(USERS, "r2", _remote_doc("r2@school.om", "Remote Two"))

    status = await reconciler.check_sync_status()
    assert (status.total_local, status.total_remote) == (3, 2)
    assert len(status.local_only) == 3
    assert len(status.remote_only) == 2
    assert status.is_synced is False

    report = await reconciler.fix()
    assert sorted(report.fixed_local_accounts) == sorted(a.id for a in local)
    assert sorted(report.fixed_remote_accounts) == ["r1", "r2"]
    assert report.errors == []
    assert report.is_synced is True

    status = await reconciler.check_sync_status()
    assert status.local_only == [] and status.remote_only == []
    assert status.is_synced is True

    # Remote documents are keyed by the local identifier and never carry the password.
    pushed = remote.collections[USERS][local[0].id]
    assert pushed["email"] == "l1@school.om"
    assert "password_hash" not in pushed and "password" not in pushed

    pulled = await store.get_account("r1")
    assert pulled.name == "Remote One"


@pytest.mark.asyncio
async def test_fix_is_idempotent(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    await _seed_local(store, "a@school.om")
    await remote.create(USERS, "r1", _remote_doc("r1@school.om"))

    await reconciler.fix()
    accounts_after_first = await store.get_accounts()
    documents_after_first = dict(remote.collections[USERS])

    second = await reconciler.fix()

    assert second.fixed_local_accounts == []
    assert second.fixed_remote_accounts == []
    assert second.errors == []
    assert second.is_synced is True
    assert await store.get_accounts() == accounts_after_first
    assert remote.collections[USERS] == documents_after_first


@pytest.mark.asyncio
async def test_fix_records_per_record_errors(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    failing, passing = await _seed_local(store, "fail@school.om", "ok@school.om")
    remote.fail_creates.add(failing.id)

    report = await reconciler.fix()

    assert report.fixed_local_accounts == [passing.id]
    assert len(report.errors) == 1
    assert report.errors[0].type == "local_to_remote"
    assert report.errors[0].id == failing.id
    assert report.is_synced is False


@pytest.mark.asyncio
async def test_unreachable_remote_degrades_to_not_synced(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    await _seed_local(store, "a@school.om")
    remote.unavailable = True

    status = await reconciler.check_sync_status()
    assert status.is_synced is False
    assert status.error

    report = await reconciler.fix()
    assert report.is_synced is False
    assert report.errors[0].type == "status"

    assert await reconciler.sync() is False
    assert len(await store.get_accounts()) == 1


@pytest.mark.asyncio
async def test_sync_pushes_local_accounts_and_keeps_passwords(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    (local,) = await _seed_local(store, "local@school.om")
    await remote.create(USERS, "r1", _remote_doc("remote@school.om", "Remote"))

    assert await reconciler.sync() is True

    assert local.id in remote.collections[USERS]
    accounts = {a.id: a for a in await store.get_accounts()}
    assert set(accounts) == {local.id, "r1"}
    assert accounts[local.id].password_hash == local.password_hash


@pytest.mark.asyncio
async def test_sync_matches_by_email_before_creating(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    (local,) = await _seed_local(store, "Same@School.om")
    await remote.create(USERS, "remote-id", _remote_doc("same@school.om", "Remote copy"))

    assert await reconciler.sync() is True

    assert list(remote.collections[USERS]) == ["remote-id"]
    accounts = await store.get_accounts()
    assert [a.id for a in accounts] == ["remote-id"]
    assert accounts[0].password_hash == local.password_hash


@pytest.mark.asyncio
async def test_sync_is_idempotent(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    await _seed_local(store, "a@school.om", "b@school.om")
    await remote.create(USERS, "r1", _remote_doc("r1@school.om"))

    assert await reconciler.sync() is True
    accounts = await store.get_accounts()
    documents = dict(remote.collections[USERS])

    assert await reconciler.sync() is True
    assert await store.get_accounts() == accounts
    assert remote.collections[USERS] == documents
    assert (await reconciler.check_sync_status()).is_synced is True


@pytest.mark.asyncio
async def test_sync_keeps_accounts_whose_push_failed(store: LocalStore, remote: FakeDocumentStore) -> None:
    reconciler = AccountReconciler(store, remote, USERS)
    (local,) = await _seed_local(store, "a@school.om")
    remote.fail_creates.add(local.id)

    assert await reconciler.sync() is True
    assert [a.id for a in await store.get_accounts()] == [local.id]


class SlowCreateDocumentStore(FakeDocumentStore):
    async def create(self, collection, document_id, document):
        await asyncio.sleep(0.1)
        return await super().create(collection, document_id, document)


@pytest.mark.asyncio
async def test_sync_keeps_accounts_saved_while_pushing(store: LocalStore) -> None:
    remote = SlowCreateDocumentStore()
    reconciler = AccountReconciler(store, remote, USERS)
    (dave,) = await _seed_local(store, "dave@school.om")

    async def save_during_push():
        await asyncio.sleep(0.02)
        return await store.save_account(
            {"email": "carol@school.om", "username": "carol", "password": "secret123", "name": "Carol"}
        )

    synced, carol = await asyncio.gather(reconciler.sync(), save_during_push())

    assert synced is True
    assert dave.id in remote.collections[USERS]
    accounts = {a.id: a for a in await store.get_accounts()}
    assert set(accounts) == {dave.id, carol.id}
    assert accounts[carol.id].password_hash == carol.password_hash
    assert accounts[dave.id].password_hash == dave.password_hash


@pytest.mark.asyncio
async def test_sync_without_configuration_returns_false(store: LocalStore) -> None:
    reconciler = AccountReconciler(store, FakeDocumentStore(database_id=""), USERS)
    assert await reconciler.sync() is False


class SlowDocumentStore(FakeDocumentStore):
    async def list(self, collection, filters=()):
        await asyncio.sleep(1)
        return await super().list(collection, filters)


@pytest.mark.asyncio
async def test_remote_timeout_is_non_fatal(store: LocalStore) -> None:
    reconciler = AccountReconciler(store, SlowDocumentStore(), USERS, timeout=0.05)
    await _seed_local(store, "a@school.om")

    assert await reconciler.sync() is False
    status = await reconciler.check_sync_status()
    assert status.is_synced is False
    assert "timed out" in status.error


def test_account_document_mapping_omits_password() -> None:
    account = Account(id="x", name="N", email="n@school.om", username="n", password_hash="hash")
    document = account_to_document(account)
    assert document["email"] == "n@school.om"
    assert document["full_name"] == "N"
    assert document["role"] == "schoolAdmin"
    assert "password_hash" not in document

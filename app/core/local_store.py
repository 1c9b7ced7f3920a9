"""Local store: authoritative CRUD for schools, accounts, students, fees, installments,
messages and per-school settings.

Every collection is one JSON document in ``local_collections``. A save or delete
reads the whole collection, mutates it and writes it back while holding that
collection's lock, so concurrent tasks never interleave partial writes.
Subscribers are notified synchronously after every successful mutation.
"""

import asyncio
import logging
import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from app.auth.security import hash_password
from app.core.constants import (
    ACCOUNTS,
    ENTITY_COLLECTIONS,
    FEE_TYPE_LABELS,
    FEES,
    INSTALLMENTS,
    MESSAGES,
    SCHOOLS,
    SETTINGS_KEY_PREFIX,
    STUDENTS,
    settings_key,
)
from app.core.derived import (
    add_months,
    derive_fee_fields,
    derive_installment_status,
    split_amount,
    to_money,
)
from app.core.enums import FeeStatus
from app.core.exceptions import (
    DuplicateKeyError,
    NotFoundError,
    ReferenceNotFoundError,
    TransientIOError,
    ValidationError,
)
from app.core.schemas import (
    Account,
    Fee,
    FeeSummary,
    Installment,
    Message,
    School,
    SchoolSettings,
    Student,
)
from app.db.models import LocalCollection

logger = logging.getLogger(__name__)

Listener = Callable[[], None]
GradeFilter = Optional[Union[str, Sequence[str]]]
T = TypeVar("T", bound=BaseModel)

Prepare = Callable[[Dict[str, Any], Optional[Dict[str, Any]], List[Dict[str, Any]]], Awaitable[None]]
Finalize = Callable[[Any], Any]


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")


def _matches_grade(grade: Optional[str], grades: GradeFilter) -> bool:
    if not grades:
        return True
    if isinstance(grades, str):
        return grade == grades
    return grade in grades


def _cached_fields(cached: Optional[Account]) -> Dict[str, Any]:
    # Remote documents carry no password hash; the school logo is local-only too
    if cached is None:
        return {}
    fields: Dict[str, Any] = {"password_hash": cached.password_hash}
    if cached.school_logo:
        fields["school_logo"] = cached.school_logo
    return fields


def fee_type_label(fee_type: str) -> str:
    return FEE_TYPE_LABELS.get(fee_type, fee_type)


class LocalStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._listeners: List[Listener] = []
        self._locks: Dict[str, asyncio.Lock] = {}
        self._batch_depth = 0

    # --- Storage primitives ---
    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _read(self, key: str) -> Any:
        try:
            async with self._session_factory() as session:
                row = await session.get(LocalCollection, key)
                return None if row is None else row.payload
        except SQLAlchemyError as e:
            logger.error("Error loading %s: %s", key, e)
            raise TransientIOError(f"Could not read {key}") from e

    async def _write(self, key: str, payload: Any) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(LocalCollection, key)
                    if row is None:
                        session.add(LocalCollection(key=key, payload=payload))
                    else:
                        row.payload = payload
                        flag_modified(row, "payload")
        except SQLAlchemyError as e:
            logger.error("Error saving %s: %s", key, e)
            raise TransientIOError(f"Could not save {key}") from e

    async def _read_records(self, key: str, strict: bool = False) -> List[Dict[str, Any]]:
        """Raw records of a collection. Non-strict reads degrade to an empty list on storage errors."""
        try:
            payload = await self._read(key)
        except TransientIOError:
            if strict:
                raise
            return []
        return list(payload) if isinstance(payload, list) else []

    @staticmethod
    def _parse(model_cls: Type[T], records: List[Dict[str, Any]]) -> List[T]:
        parsed: List[T] = []
        for raw in records:
            try:
                parsed.append(model_cls.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning("Skipping unreadable %s record %s: %s", model_cls.__name__, raw.get("id"), e)
        return parsed

    @staticmethod
    def _validate(model_cls: Type[T], record: Dict[str, Any]) -> T:
        try:
            return model_cls.model_validate(record)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {model_cls.__name__.lower()}: {e.errors()[0]['msg']}") from e

    async def _list(self, key: str, model_cls: Type[T]) -> List[T]:
        return self._parse(model_cls, await self._read_records(key))

    async def _find(self, key: str, model_cls: Type[T], record_id: Optional[str], strict: bool = False) -> Optional[T]:
        if not record_id:
            return None
        for raw in await self._read_records(key, strict=strict):
            if raw.get("id") == record_id:
                parsed = self._parse(model_cls, [raw])
                return parsed[0] if parsed else None
        return None

    async def _upsert(
        self,
        key: str,
        model_cls: Type[T],
        data: Dict[str, Any],
        *,
        label: str,
        timestamps: bool = True,
        prepare: Optional[Prepare] = None,
        finalize: Optional[Finalize] = None,
    ) -> T:
        async with self._lock(key):
            records = await self._read_records(key, strict=True)
            now = _utcnow()
            record_id = data.get("id")
            if not record_id:
                existing = None
                index = None
                record = {**data, "id": _new_id()}
                if timestamps:
                    record["created_at"] = now
                    record["updated_at"] = now
            else:
                index = next((i for i, r in enumerate(records) if r.get("id") == record_id), None)
                if index is None:
                    raise NotFoundError(f"{label} not found")
                existing = records[index]
                record = {**existing, **data}
                if timestamps:
                    record["created_at"] = existing.get("created_at")
                    record["updated_at"] = now
            if prepare is not None:
                await prepare(record, existing, records)
            model = self._validate(model_cls, record)
            if finalize is not None:
                model = finalize(model)
            if index is None:
                records.append(_dump(model))
            else:
                records[index] = _dump(model)
            await self._write(key, records)
        self._notify()
        return model

    async def _delete(self, key: str, record_id: str) -> None:
        async with self._lock(key):
            records = await self._read_records(key, strict=True)
            remaining = [r for r in records if r.get("id") != record_id]
            if len(remaining) == len(records):
                return
            await self._write(key, remaining)
        self._notify()

    async def initialize(self) -> None:
        """Create empty collections for any key that has never been written."""
        for key in ENTITY_COLLECTIONS:
            async with self._lock(key):
                if await self._read(key) is None:
                    await self._write(key, [])

    # --- Change notification ---
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Store listener %r failed", listener)

    def _notify(self) -> None:
        if self._batch_depth:
            return
        self.notify_listeners()

    @asynccontextmanager
    async def batched(self) -> AsyncIterator["LocalStore"]:
        """Defer notifications for the enclosed mutations and emit exactly one at exit."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                self.notify_listeners()

    # --- Schools ---
    async def get_schools(self) -> List[School]:
        return await self._list(SCHOOLS, School)

    async def get_school(self, school_id: Optional[str]) -> Optional[School]:
        return await self._find(SCHOOLS, School, school_id)

    async def save_school(self, data: Dict[str, Any]) -> School:
        return await self._upsert(SCHOOLS, School, data, label="School", timestamps=False)

    async def delete_school(self, school_id: str) -> None:
        # Students of the school are left in place.
        await self._delete(SCHOOLS, school_id)

    # --- Accounts ---
    async def get_accounts(self, school_id: Optional[str] = None) -> List[Account]:
        accounts = await self._list(ACCOUNTS, Account)
        if school_id:
            accounts = [a for a in accounts if a.school_id == school_id]
        return accounts

    async def get_account(self, account_id: Optional[str]) -> Optional[Account]:
        return await self._find(ACCOUNTS, Account, account_id)

    async def find_account(self, email: Optional[str] = None, username: Optional[str] = None) -> Optional[Account]:
        """Case-insensitive lookup by email, then by username."""
        accounts = await self.get_accounts()
        if email:
            for account in accounts:
                if account.email.lower() == email.lower():
                    return account
        if username:
            for account in accounts:
                if account.username and account.username.lower() == username.lower():
                    return account
        return None

    async def _prepare_account(
        self,
        record: Dict[str, Any],
        existing: Optional[Dict[str, Any]],
        records: List[Dict[str, Any]],
    ) -> None:
        password = record.pop("password", None)
        if password:
            record["password_hash"] = hash_password(password)

        email = str(record.get("email") or "").lower()
        username = str(record.get("username") or "").lower()
        for other in records:
            if other.get("id") == record["id"]:
                continue
            if email and str(other.get("email") or "").lower() == email:
                raise DuplicateKeyError("An account with this email already exists")
            if username and str(other.get("username") or "").lower() == username:
                raise DuplicateKeyError("An account with this username already exists")

        if record.get("school_id"):
            school = await self.get_school(record["school_id"])
            if school is not None:
                record["school_name"] = school.name
                record["school_logo"] = school.logo
        if existing is None:
            record.setdefault("last_login", None)
            record.setdefault("created_at", _utcnow())

    async def save_account(self, data: Dict[str, Any]) -> Account:
        return await self._upsert(
            ACCOUNTS, Account, data, label="Account", timestamps=False, prepare=self._prepare_account
        )

    async def delete_account(self, account_id: str) -> None:
        await self._delete(ACCOUNTS, account_id)

    async def reconcile_accounts(self, remote_accounts: List[Account], superseded: Sequence[str] = ()) -> None:
        """Rebuild the account cache from the remote view in one write.

        The merge runs against a fresh read under the accounts lock. Cached password
        hashes and logos carry over by id, then by email. Local records absent from
        the remote view are kept unless their id is in ``superseded``.
        """
        async with self._lock(ACCOUNTS):
            cached = self._parse(Account, await self._read_records(ACCOUNTS, strict=True))
            by_id = {a.id: a for a in cached}
            by_email = {a.email.lower(): a for a in cached if a.email}
            accounts = [
                a.model_copy(update=_cached_fields(by_id.get(a.id) or by_email.get(a.email.lower())))
                for a in remote_accounts
            ]
            remote_ids = {a.id for a in remote_accounts}
            dropped = set(superseded)
            accounts.extend(a for a in cached if a.id not in remote_ids and a.id not in dropped)
            await self._write(ACCOUNTS, [_dump(a) for a in accounts])
        self._notify()

    async def merge_accounts(self, accounts: List[Account]) -> None:
        """Insert or replace the given accounts by id in one write.

        A cached record with the same email under another id is replaced.
        """
        async with self._lock(ACCOUNTS):
            records = await self._read_records(ACCOUNTS, strict=True)
            for account in accounts:
                email = account.email.lower()
                matches = [
                    i for i, r in enumerate(records)
                    if r.get("id") == account.id or (email and str(r.get("email") or "").lower() == email)
                ]
                if not matches:
                    records.append(_dump(account))
                    continue
                records[matches[0]] = _dump(account)
                for i in reversed(matches[1:]):
                    del records[i]
            await self._write(ACCOUNTS, records)
        self._notify()

    # --- Students ---
    async def get_students(self, school_id: Optional[str] = None, grades: GradeFilter = None) -> List[Student]:
        students = await self._list(STUDENTS, Student)
        return [
            s for s in students
            if (not school_id or s.school_id == school_id) and _matches_grade(s.grade, grades)
        ]

    async def get_student(self, student_id: Optional[str]) -> Optional[Student]:
        return await self._find(STUDENTS, Student, student_id)

    @staticmethod
    def generate_student_number(school_id: str, grade: Optional[str]) -> str:
        grade_code = f"{grade[0]}{grade[-1]}" if grade else "XX"
        school_code = (school_id or "")[:2]
        return f"{school_code}{grade_code}{1000 + secrets.randbelow(9000)}"

    async def _prepare_student(
        self,
        record: Dict[str, Any],
        existing: Optional[Dict[str, Any]],
        records: List[Dict[str, Any]],
    ) -> None:
        if not record.get("student_number"):
            record["student_number"] = self.generate_student_number(
                str(record.get("school_id") or ""), record.get("grade")
            )
        for other in records:
            if (
                other.get("id") != record["id"]
                and other.get("school_id") == record.get("school_id")
                and other.get("student_number") == record["student_number"]
            ):
                raise DuplicateKeyError(f"Student number {record['student_number']} already exists in this school")

    async def save_student(self, data: Dict[str, Any]) -> Student:
        return await self._upsert(STUDENTS, Student, data, label="Student", prepare=self._prepare_student)

    async def delete_student(self, student_id: str) -> None:
        # Fees and installments referencing the student are left as they are.
        await self._delete(STUDENTS, student_id)

    # --- Fees ---
    async def get_fees(
        self,
        school_id: Optional[str] = None,
        student_id: Optional[str] = None,
        grades: GradeFilter = None,
    ) -> List[Fee]:
        fees = await self._list(FEES, Fee)
        return [
            f for f in fees
            if (not school_id or f.school_id == school_id)
            and (not student_id or f.student_id == student_id)
            and _matches_grade(f.grade, grades)
        ]

    async def get_fee(self, fee_id: Optional[str]) -> Optional[Fee]:
        return await self._find(FEES, Fee, fee_id)

    async def _prepare_fee(
        self,
        record: Dict[str, Any],
        existing: Optional[Dict[str, Any]],
        records: List[Dict[str, Any]],
    ) -> None:
        if existing is not None:
            return
        student = await self._find(STUDENTS, Student, record.get("student_id"), strict=True)
        if student is None:
            raise ReferenceNotFoundError("Student not found")
        record["student_name"] = student.name
        record["grade"] = student.grade
        if not record.get("school_id"):
            record["school_id"] = student.school_id

    @staticmethod
    def _finalize_fee(fee: Fee) -> Fee:
        return fee.model_copy(update=derive_fee_fields(fee.amount, fee.discount, fee.paid))

    async def save_fee(self, data: Dict[str, Any]) -> Fee:
        """Create or update a fee. Caller-supplied balance/status are always recomputed."""
        return await self._upsert(
            FEES, Fee, data, label="Fee", prepare=self._prepare_fee, finalize=self._finalize_fee
        )

    async def record_payment(self, fee_id: str, amount: Any) -> Fee:
        payment = to_money(amount)
        if payment <= 0:
            raise ValidationError("Payment amount must be greater than zero")

        async def add_payment(record, existing, records) -> None:
            record["paid"] = to_money(existing.get("paid")) + payment

        return await self._upsert(
            FEES, Fee, {"id": fee_id}, label="Fee", prepare=add_payment, finalize=self._finalize_fee
        )

    async def delete_fee(self, fee_id: str) -> None:
        await self._delete(FEES, fee_id)

    async def get_fee_summary(self, school_id: str, grades: GradeFilter = None) -> FeeSummary:
        summary = FeeSummary()
        for fee in await self.get_fees(school_id, grades=grades):
            summary.total_amount += fee.amount
            summary.total_discount += fee.discount
            summary.total_paid += fee.paid
            summary.total_balance += fee.balance
            summary.fee_count += 1
            if fee.status == FeeStatus.paid:
                summary.paid_count += 1
            elif fee.status == FeeStatus.partial:
                summary.partial_count += 1
            else:
                summary.unpaid_count += 1
        return summary

    # --- Installments ---
    @staticmethod
    def _with_status(installment: Installment, today: Optional[date] = None) -> Installment:
        status = derive_installment_status(installment.paid_date, installment.due_date, today)
        return installment.model_copy(update={"status": status})

    async def get_installments(
        self,
        school_id: Optional[str] = None,
        student_id: Optional[str] = None,
        fee_id: Optional[str] = None,
        grades: GradeFilter = None,
        today: Optional[date] = None,
    ) -> List[Installment]:
        installments = await self._list(INSTALLMENTS, Installment)
        return [
            self._with_status(i, today) for i in installments
            if (not school_id or i.school_id == school_id)
            and (not student_id or i.student_id == student_id)
            and (not fee_id or i.fee_id == fee_id)
            and _matches_grade(i.grade, grades)
        ]

    async def get_installment(self, installment_id: Optional[str], today: Optional[date] = None) -> Optional[Installment]:
        installment = await self._find(INSTALLMENTS, Installment, installment_id)
        return None if installment is None else self._with_status(installment, today)

    async def _prepare_installment(
        self,
        record: Dict[str, Any],
        existing: Optional[Dict[str, Any]],
        records: List[Dict[str, Any]],
    ) -> None:
        if existing is None and (not record.get("student_name") or not record.get("grade")):
            student = await self._find(STUDENTS, Student, record.get("student_id"), strict=True)
            if student is not None:
                record["student_name"] = student.name
                record["grade"] = student.grade

    async def save_installment(self, data: Dict[str, Any]) -> Installment:
        return await self._upsert(
            INSTALLMENTS,
            Installment,
            data,
            label="Installment",
            prepare=self._prepare_installment,
            finalize=self._with_status,
        )

    async def mark_installment_paid(self, installment_id: str, paid_date: Optional[date] = None) -> Installment:
        return await self.save_installment({"id": installment_id, "paid_date": paid_date or date.today()})

    async def delete_installment(self, installment_id: str) -> None:
        await self._delete(INSTALLMENTS, installment_id)

    async def create_installment_plan(self, fee: Fee, count: int, interval_months: int = 1) -> List[Installment]:
        """Split ``fee.amount - fee.discount`` into ``count`` monthly installments starting at the fee's due date."""
        if count <= 0:
            return []
        label = fee.description or fee_type_label(fee.fee_type)
        installments: List[Installment] = []
        for i, amount in enumerate(split_amount(fee.amount - fee.discount, count)):
            installments.append(
                await self.save_installment(
                    {
                        "fee_id": fee.id,
                        "student_id": fee.student_id,
                        "student_name": fee.student_name,
                        "grade": fee.grade,
                        "amount": amount,
                        "due_date": add_months(fee.due_date, i * interval_months),
                        "paid_date": None,
                        "school_id": fee.school_id,
                        "fee_type": fee.fee_type,
                        "note": f"القسط {i + 1} من {count} - {label}",
                    }
                )
            )
        return installments

    # --- Messages ---
    async def get_messages(self, school_id: Optional[str] = None, student_id: Optional[str] = None) -> List[Message]:
        messages = await self._list(MESSAGES, Message)
        return [
            m for m in messages
            if (not school_id or m.school_id == school_id) and (not student_id or m.student_id == student_id)
        ]

    async def save_message(self, data: Dict[str, Any]) -> Message:
        """Append a message to the history. Messages are never updated."""
        record = {k: v for k, v in data.items() if k != "id"}
        record.setdefault("sent_at", _utcnow())
        return await self._upsert(MESSAGES, Message, record, label="Message", timestamps=False)

    async def delete_message(self, message_id: str) -> None:
        await self._delete(MESSAGES, message_id)

    # --- Settings ---
    async def get_settings(self, school_id: str) -> SchoolSettings:
        key = settings_key(school_id)
        async with self._lock(key):
            try:
                raw = await self._read(key)
            except TransientIOError:
                raw = None
            if raw is not None:
                try:
                    return SchoolSettings.model_validate(raw)
                except PydanticValidationError as e:
                    logger.warning("Stored settings for school %s are unreadable, using defaults: %s", school_id, e)

            school = await self.get_school(school_id)
            if school is not None:
                defaults = SchoolSettings(
                    name=school.name,
                    email=school.email,
                    phone=school.phone,
                    address=school.address,
                    logo=school.logo,
                )
            else:
                defaults = SchoolSettings()
            try:
                await self._write(key, _dump(defaults))
            except TransientIOError:
                logger.warning("Unable to persist default settings for school %s", school_id)
            return defaults

    async def save_settings(self, school_id: str, data: Union[SchoolSettings, Dict[str, Any]]) -> SchoolSettings:
        settings = data if isinstance(data, SchoolSettings) else self._validate(SchoolSettings, data)
        key = settings_key(school_id)
        async with self._lock(key):
            await self._write(key, _dump(settings))
        self._notify()
        return settings

    # --- Reset ---
    async def reset_all(self, remote_cleanup: Optional[Callable[[], Awaitable[Any]]] = None) -> None:
        """Clear every collection and every settings record. Irreversible.

        ``remote_cleanup`` is attempted afterwards; its failure does not undo the local reset.
        Once any collection is cleared, listeners are notified and the remote cleanup runs
        even if clearing the settings records fails.
        """
        cleared = False
        try:
            for key in ENTITY_COLLECTIONS:
                async with self._lock(key):
                    await self._write(key, [])
                cleared = True
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        keys = (
                            await session.execute(
                                select(LocalCollection.key).where(LocalCollection.key.like(f"{SETTINGS_KEY_PREFIX}%"))
                            )
                        ).scalars().all()
                        await session.execute(delete(LocalCollection).where(LocalCollection.key.in_(keys)))
            except SQLAlchemyError as e:
                logger.error("Error clearing school settings: %s", e)
                raise TransientIOError("Could not clear school settings") from e
            logger.info("All local data has been reset")
        finally:
            if cleared:
                if remote_cleanup is not None:
                    try:
                        await remote_cleanup()
                    except Exception as e:
                        logger.warning("Remote cleanup after reset failed: %s", e)
                self._notify()

"""CSV import/export of students and fees.

``ImportMerger.process_rows`` turns header-mapped rows into students and fees
without touching storage; ``ImportMerger.persist`` writes them through the
local store, de-duplicating students by their business student number.
"""

import csv
import io
import logging
import secrets
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from app.core.constants import GRADE_LEVELS
from app.core.derived import as_date, to_money
from app.core.enums import FeeType, TransportationDirection, TransportationType
from app.core.exceptions import ServiceError, ValidationError
from app.core.local_store import LocalStore
from app.core.phone import DEFAULT_PHONE_PREFIX, normalize_phone
from app.core.schemas import SchoolSettings, Student

logger = logging.getLogger(__name__)

BOM = "\ufeff"

HEADER_MAP = {
    # Students
    "اسم الطالب": "name",
    "رقم الطالب": "studentId",
    "الصف": "grade",
    "اسم ولي الأمر": "parentName",
    "رقم الهاتف": "phone",
    "النقل": "transportation",
    "اتجاه النقل": "transportationDirection",
    "رسوم النقل": "transportationFee",
    # Fees
    "نوع الرسوم": "feeType",
    "المبلغ": "amount",
    "الخصم": "discount",
    "نسبة الخصم %": "discountPercentage",
    "تاريخ الاستحقاق": "dueDate",
    # Tuition given directly on a student row
    "الرسوم الدراسية": "tuitionFee",
    "خصم الرسوم الدراسية": "tuitionDiscount",
    "نسبة الخصم": "discountPercentage",
    "نسبة خصم الرسوم": "tuitionDiscountPercentage",
}

STUDENT_TEMPLATE_HEADERS = [
    "اسم الطالب",
    "رقم الطالب",
    "الصف",
    "اسم ولي الأمر",
    "رقم الهاتف",
    "النقل",
    "رسوم النقل",
    "الرسوم الدراسية",
    "خصم الرسوم الدراسية",
    "نسبة الخصم %",
]

STUDENT_TEMPLATE_ROWS = [
    ["أحمد محمد", "S1001", "الروضة الأولى KG1", "محمد أحمد", "+968 95123456", "اتجاهين", "300", "1000", "0", "0"],
    ["فاطمة علي", "S1002", "التمهيدي KG2", "علي حسن", "+968 95123457", "اتجاه واحد - إلى المدرسة", "150", "1000", "100", "0"],
    ["سالم خالد", "S1003", "الصف الأول", "خالد سالم", "+968 95123458", "لا يوجد", "", "1200", "0", "10"],
]

FEE_TEMPLATE_HEADERS = ["رقم الطالب", "نوع الرسوم", "المبلغ", "الخصم", "نسبة الخصم %", "تاريخ الاستحقاق"]

FEE_TEMPLATE_ROWS = [
    ["S1001", "tuition", "1000", "0", "0", "2023-09-01"],
    ["S1002", "transportation", "150", "0", "0", "2023-09-01"],
    ["S1003", "books", "50", "0", "10", "2023-09-15"],
]

TRANSPORTATION_LABELS = {
    TransportationType.NONE: "لا يوجد",
    TransportationType.ONE_WAY: "اتجاه واحد",
    TransportationType.TWO_WAY: "اتجاهين",
}

DIRECTION_LABELS = {
    TransportationDirection.TO_SCHOOL: "إلى المدرسة",
    TransportationDirection.FROM_SCHOOL: "من المدرسة",
}


class ImportedStudent(BaseModel):
    name: str
    student_number: str
    grade: str
    parent_name: str = ""
    phone: str = ""
    transportation: TransportationType = TransportationType.NONE
    transportation_direction: Optional[TransportationDirection] = None
    transportation_fee: Optional[Decimal] = None
    custom_transportation_fee: bool = False
    generated_number: bool = False


class ImportedFee(BaseModel):
    student_number: str
    fee_type: str
    amount: Decimal
    discount: Decimal = Decimal("0")
    due_date: date
    transportation_type: Optional[TransportationType] = None


class ProcessedImport(BaseModel):
    students: List[ImportedStudent] = Field(default_factory=list)
    fees: List[ImportedFee] = Field(default_factory=list)


class ImportResult(BaseModel):
    students_count: int = 0
    fees_count: int = 0


def parse_csv(text: str) -> List[Dict[str, str]]:
    """Parse CSV text into rows keyed by canonical field names. Unknown headers are dropped."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    reader = csv.reader(io.StringIO(text))
    header: Optional[List[Optional[str]]] = None
    rows: List[Dict[str, str]] = []
    for values in reader:
        if not any(v.strip() for v in values):
            continue
        if header is None:
            header = [HEADER_MAP.get(h.strip()) for h in values]
            continue
        row: Dict[str, str] = {}
        for field, value in zip(header, values):
            if field and value.strip():
                row[field] = value.strip()
        rows.append(row)
    if header is None:
        raise ValidationError("CSV file is empty")
    return rows


def _to_csv(headers: List[str], rows: Iterable[List[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return BOM + buffer.getvalue()


def student_template_csv() -> str:
    return _to_csv(STUDENT_TEMPLATE_HEADERS, STUDENT_TEMPLATE_ROWS)


def fee_template_csv() -> str:
    return _to_csv(FEE_TEMPLATE_HEADERS, FEE_TEMPLATE_ROWS)


def export_students_csv(students: Iterable[Student]) -> str:
    rows = []
    for student in students:
        transportation = TRANSPORTATION_LABELS[student.transportation]
        if student.transportation == TransportationType.ONE_WAY and student.transportation_direction:
            transportation = f"{transportation} - {DIRECTION_LABELS[student.transportation_direction]}"
        rows.append(
            [
                student.name,
                student.student_number,
                student.grade,
                student.parent_name,
                student.phone,
                transportation,
                str(student.transportation_fee) if student.transportation_fee is not None else "",
                "",
                "",
                "",
            ]
        )
    return _to_csv(STUDENT_TEMPLATE_HEADERS, rows)


def parse_transportation(value: Optional[str]) -> Tuple[TransportationType, Optional[TransportationDirection]]:
    if not value:
        return TransportationType.NONE, None
    text = value.strip().lower()
    if "اتجاهين" in text or text == "two-way":
        return TransportationType.TWO_WAY, None
    if "اتجاه واحد" in text or text == "one-way" or "اتجاه" in text:
        return TransportationType.ONE_WAY, parse_direction(text)
    return TransportationType.NONE, None


def parse_direction(value: Optional[str]) -> Optional[TransportationDirection]:
    if not value:
        return None
    text = value.strip().lower()
    if "إلى المدرسة" in text or "الى المدرسة" in text or "to-school" in text:
        return TransportationDirection.TO_SCHOOL
    if "من المدرسة" in text or "from-school" in text:
        return TransportationDirection.FROM_SCHOOL
    return None


def _number(value: Optional[str]) -> Optional[Decimal]:
    """Parse a numeric cell; blank or malformed cells read as missing."""
    if value is None or str(value).strip() == "":
        return None
    try:
        number = to_money(str(value).replace(",", "").strip())
    except (ValueError, ArithmeticError):
        return None
    return number if number.is_finite() else None


def _due_date(row: Dict[str, str], today: date) -> date:
    try:
        return as_date(row.get("dueDate")) or today
    except ValueError:
        return today


def _discount(amount: Decimal, absolute: Optional[Decimal], percentage: Optional[Decimal]) -> Decimal:
    if percentage is not None and percentage > 0:
        return to_money(amount * percentage / 100)
    return absolute or Decimal("0")


def fee_description(fee_type: str, student_name: str, transportation: Optional[TransportationType] = None,
                    direction: Optional[TransportationDirection] = None) -> str:
    if fee_type == FeeType.TRANSPORTATION.value:
        if transportation == TransportationType.TWO_WAY:
            return "رسوم النقل المدرسي - اتجاهين"
        suffix = f" - {DIRECTION_LABELS[direction]}" if direction else ""
        return f"رسوم النقل المدرسي - اتجاه واحد{suffix}"
    if fee_type == FeeType.TUITION.value:
        return f"الرسوم الدراسية - {student_name}"
    return f"{fee_type} - {student_name}"


class ImportMerger:
    def __init__(self, store: LocalStore, phone_prefix: str = DEFAULT_PHONE_PREFIX) -> None:
        self._store = store
        self._phone_prefix = phone_prefix

    @staticmethod
    def _new_student_number(taken: Set[str]) -> str:
        while True:
            number = f"S{secrets.randbelow(10000):04d}"
            if number not in taken:
                return number

    def process_rows(
        self,
        rows: Iterable[Dict[str, str]],
        school_id: str,
        settings: SchoolSettings,
        today: Optional[date] = None,
        existing_numbers: Iterable[str] = (),
    ) -> ProcessedImport:
        """Build students and fees from canonical rows. Pure: nothing is read or written.

        Generated student numbers avoid every number in the rows and in ``existing_numbers``.
        """
        today = today or date.today()
        rows = list(rows)
        result = ProcessedImport()
        taken: Set[str] = {(r.get("studentId") or "").strip() for r in rows} | set(existing_numbers)

        for row in rows:
            name = (row.get("name") or "").strip()
            number = (row.get("studentId") or "").strip()
            if not name and not number:
                continue
            if not name:
                # A fee row against an existing student.
                fee = self._fee_from_row(row, number, today)
                if fee is not None:
                    result.fees.append(fee)
                continue

            generated = not number
            if generated:
                number = self._new_student_number(taken)
                taken.add(number)

            grade = row.get("grade", "").strip()
            if grade not in GRADE_LEVELS:
                grade = GRADE_LEVELS[0]

            transportation, direction = parse_transportation(row.get("transportation"))
            if row.get("transportationDirection"):
                direction = parse_direction(row["transportationDirection"]) or direction

            fee_override = _number(row.get("transportationFee"))
            custom_fee = fee_override is not None and fee_override > 0
            if custom_fee:
                transportation_fee = fee_override
            elif transportation == TransportationType.ONE_WAY:
                transportation_fee = settings.transportation_fee_one_way
            elif transportation == TransportationType.TWO_WAY:
                transportation_fee = settings.transportation_fee_two_way
            else:
                transportation_fee = None

            result.students.append(
                ImportedStudent(
                    name=name,
                    student_number=number,
                    grade=grade,
                    parent_name=row.get("parentName", ""),
                    phone=normalize_phone(row.get("phone", ""), self._phone_prefix),
                    transportation=transportation,
                    transportation_direction=direction if transportation == TransportationType.ONE_WAY else None,
                    transportation_fee=transportation_fee,
                    custom_transportation_fee=custom_fee,
                    generated_number=generated,
                )
            )

            due_date = _due_date(row, today)
            fee_type = (row.get("feeType") or "").strip()

            if transportation != TransportationType.NONE and transportation_fee and transportation_fee > 0:
                result.fees.append(
                    ImportedFee(
                        student_number=number,
                        fee_type=FeeType.TRANSPORTATION.value,
                        amount=transportation_fee,
                        due_date=due_date,
                        transportation_type=transportation,
                    )
                )

            tuition_row = not fee_type or fee_type == FeeType.TUITION.value
            tuition = _number(row.get("tuitionFee"))
            if tuition is None and tuition_row:
                tuition = _number(row.get("amount"))
            if tuition is not None and tuition > 0:
                absolute = _number(row.get("tuitionDiscount"))
                if absolute is None and tuition_row:
                    absolute = _number(row.get("discount"))
                percentage = _number(row.get("tuitionDiscountPercentage"))
                if percentage is None and tuition_row:
                    percentage = _number(row.get("discountPercentage"))
                result.fees.append(
                    ImportedFee(
                        student_number=number,
                        fee_type=FeeType.TUITION.value,
                        amount=tuition,
                        discount=_discount(tuition, absolute, percentage),
                        due_date=due_date,
                    )
                )

            if fee_type and fee_type not in (FeeType.TUITION.value, FeeType.TRANSPORTATION.value):
                fee = self._fee_from_row(row, number, today)
                if fee is not None:
                    result.fees.append(fee)

        return result

    @staticmethod
    def _fee_from_row(row: Dict[str, str], number: str, today: date) -> Optional[ImportedFee]:
        fee_type = (row.get("feeType") or "").strip()
        amount = _number(row.get("amount"))
        if not fee_type or amount is None or amount <= 0:
            return None
        return ImportedFee(
            student_number=number,
            fee_type=fee_type,
            amount=amount,
            discount=_discount(amount, _number(row.get("discount")), _number(row.get("discountPercentage"))),
            due_date=_due_date(row, today),
        )

    async def persist(
        self,
        students: List[ImportedStudent],
        fees: List[ImportedFee],
        school_id: str,
    ) -> ImportResult:
        """Save new students, then their fees. Emits a single store notification for the whole batch.

        A supplied student number already present in the school is a duplicate and is skipped.
        A generated number that collides is replaced, and that student's fees follow it.
        """
        result = ImportResult()
        async with self._store.batched():
            resolved: Dict[str, Student] = {
                s.student_number: s for s in await self._store.get_students(school_id)
            }
            batch_numbers = {s.student_number for s in students}
            renumbered: Dict[str, str] = {}

            for student in students:
                if not student.name:
                    continue
                number = student.student_number
                if number in resolved:
                    if not student.generated_number:
                        logger.info("Skipping duplicate student %s - %s", number, student.name)
                        continue
                    number = self._new_student_number(set(resolved) | batch_numbers)
                    renumbered[student.student_number] = number
                    batch_numbers.add(number)
                    logger.info(
                        "Generated number %s is taken, using %s for %s", student.student_number, number, student.name
                    )
                try:
                    saved = await self._store.save_student(
                        {
                            **student.model_dump(exclude={"generated_number"}),
                            "student_number": number,
                            "phone": student.phone,
                            "whatsapp": student.phone,
                            "address": "",
                            "school_id": school_id,
                        }
                    )
                except ServiceError as e:
                    logger.error("Error saving imported student %s: %s", number, e.message)
                    continue
                resolved[saved.student_number] = saved
                result.students_count += 1

            for fee in fees:
                number = renumbered.get(fee.student_number, fee.student_number)
                student = resolved.get(number)
                if student is None:
                    logger.warning("Skipping fee for unknown student number %s", number)
                    continue
                try:
                    await self._store.save_fee(
                        {
                            "student_id": student.id,
                            "fee_type": fee.fee_type,
                            "description": fee_description(
                                fee.fee_type,
                                student.name,
                                fee.transportation_type or student.transportation,
                                student.transportation_direction,
                            ),
                            "transportation_type": fee.transportation_type,
                            "amount": fee.amount,
                            "discount": fee.discount,
                            "paid": 0,
                            "due_date": fee.due_date,
                            "school_id": school_id,
                        }
                    )
                except ServiceError as e:
                    logger.error("Error saving imported fee for %s: %s", fee.student_number, e.message)
                    continue
                result.fees_count += 1

        logger.info("Imported %d students and %d fees", result.students_count, result.fees_count)
        return result

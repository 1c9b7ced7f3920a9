"""Fixed vocabularies and defaults for the Omani school finance domain."""

from decimal import Decimal

GRADE_LEVELS = [
    "الروضة الأولى KG1",
    "التمهيدي KG2",
    "الصف الأول",
    "الصف الثاني",
    "الصف الثالث",
    "الصف الرابع",
    "الصف الخامس",
    "الصف السادس",
    "الصف السابع",
    "الصف الثامن",
    "الصف التاسع",
    "الصف العاشر",
    "الصف الحادي عشر",
    "الصف الثاني عشر",
]

FEE_TYPE_LABELS = {
    "tuition": "رسوم دراسية",
    "transportation": "نقل مدرسي",
    "activities": "أنشطة",
    "uniform": "زي مدرسي",
    "books": "كتب",
    "other": "رسوم أخرى",
}

CURRENCY = "ر.ع"

# Omani rial is subdivided into 1000 baisa.
MONEY_QUANT = Decimal("0.001")

DEFAULT_INSTALLMENTS = 4
DEFAULT_SCHOOL_NAME = "المدرسة"
DEFAULT_TUITION_FEE_CATEGORY = "رسوم دراسية"
DEFAULT_TRANSPORTATION_FEE_ONE_WAY = Decimal("150")
DEFAULT_TRANSPORTATION_FEE_TWO_WAY = Decimal("300")

# Local collection keys
SCHOOLS = "schools"
ACCOUNTS = "accounts"
STUDENTS = "students"
FEES = "fees"
INSTALLMENTS = "installments"
MESSAGES = "messages"
ENTITY_COLLECTIONS = (SCHOOLS, ACCOUNTS, STUDENTS, FEES, INSTALLMENTS, MESSAGES)
SETTINGS_KEY_PREFIX = "school_settings_"


def settings_key(school_id: str) -> str:
    return f"{SETTINGS_KEY_PREFIX}{school_id}"

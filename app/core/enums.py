from enum import Enum


class AccountRole(str, Enum):
    ADMIN = "admin"
    SCHOOL_ADMIN = "schoolAdmin"
    GRADE_MANAGER = "gradeManager"


class FeeType(str, Enum):
    TUITION = "tuition"
    TRANSPORTATION = "transportation"
    UNIFORM = "uniform"
    BOOKS = "books"
    ACTIVITIES = "activities"
    OTHER = "other"


class FeeStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"


class InstallmentStatus(str, Enum):
    paid = "paid"
    upcoming = "upcoming"
    overdue = "overdue"


class MessageStatus(str, Enum):
    delivered = "delivered"
    failed = "failed"
    pending = "pending"


class TransportationType(str, Enum):
    NONE = "none"
    ONE_WAY = "one-way"
    TWO_WAY = "two-way"


class TransportationDirection(str, Enum):
    TO_SCHOOL = "to-school"
    FROM_SCHOOL = "from-school"


class MessageTemplate(str, Enum):
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    TRANSPORTATION_NOTICE = "transportation_notice"
    GENERAL = "general"

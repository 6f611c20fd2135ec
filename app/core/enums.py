from enum import Enum


class TenantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class StudentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"


class TransportMode(str, Enum):
    WALKING = "WALKING"
    SCHOOL_BUS = "SCHOOL_BUS"
    PRIVATE = "PRIVATE"


class TermStatus(str, Enum):
    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class FeeStatus(str, Enum):
    """Shared by student term assignments and their fee items."""

    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"
    WAIVED = "WAIVED"


# Statuses that can still receive money
OUTSTANDING_STATUSES = (FeeStatus.PENDING, FeeStatus.PARTIAL, FeeStatus.OVERDUE)
# Administrative overrides; never re-derived and never paid into
TERMINAL_STATUSES = (FeeStatus.CANCELLED, FeeStatus.WAIVED)


class FeeType(str, Enum):
    TUITION = "TUITION"
    BASIC = "BASIC"
    EXAMINATION = "EXAMINATION"
    TRANSPORT = "TRANSPORT"
    LIBRARY = "LIBRARY"
    SPORTS = "SPORTS"
    ACTIVITY = "ACTIVITY"
    HOSTEL = "HOSTEL"
    UNIFORM = "UNIFORM"
    BOOKS = "BOOKS"
    OTHER = "OTHER"
    ADDITIONAL = "ADDITIONAL"


class EligibilityCode(str, Enum):
    NO_TERM_ASSIGNMENTS = "NO_TERM_ASSIGNMENTS"
    NO_FEE_ITEMS = "NO_FEE_ITEMS"
    NO_UNPAID_ITEMS = "NO_UNPAID_ITEMS"
    ELIGIBLE = "ELIGIBLE"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    PAYMENT = "PAYMENT"
    WAIVE = "WAIVE"
    CANCEL = "CANCEL"
    DELETE = "DELETE"

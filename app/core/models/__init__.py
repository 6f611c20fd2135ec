from app.core.models.tenant import Tenant
from app.core.models.student import Student
from app.core.models.academic_term import AcademicTerm
from app.core.models.grade_term_fee import GradeTermFee
from app.core.models.student_term_assignment import StudentTermAssignment
from app.core.models.term_fee_item import TermFeeItem
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "Tenant",
    "Student",
    "AcademicTerm",
    "GradeTermFee",
    "StudentTermAssignment",
    "TermFeeItem",
    "FeeAuditLog",
]

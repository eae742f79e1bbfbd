# ALERIS.ops API Models Package
from src.models.orm_models import (
    # Base
    Base,
    # Organizaciones
    Organization,
    Branch,
    OrganizationInvitation,
    # Identidad y staff
    AuthUser,
    Profile,
    Professional,
    BranchStaff,
    StaffSchedule,
    TeacherReview,
    # Alumnos y catálogo
    Student,
    Service,
    Plan,
    PlanServiceAccess,
    Membership,
    # Agenda y asistencia
    Appointment,
    AppointmentAttendee,
    AttendanceRecord,
    # Finanzas
    Transaction,
    Expense,
)

__all__ = [
    "Base",
    "Organization",
    "Branch",
    "OrganizationInvitation",
    "AuthUser",
    "Profile",
    "Professional",
    "BranchStaff",
    "StaffSchedule",
    "TeacherReview",
    "Student",
    "Service",
    "Plan",
    "PlanServiceAccess",
    "Membership",
    "Appointment",
    "AppointmentAttendee",
    "AttendanceRecord",
    "Transaction",
    "Expense",
]

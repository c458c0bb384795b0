from __future__ import annotations

from clinic_sync.domain.models import UserRole

APPOINTMENT_MANAGER_ROLES = frozenset({UserRole.CLINICIAN, UserRole.RECEPTIONIST, UserRole.ADMIN})


def can_manage_appointments(role: UserRole) -> bool:
    return UserRole(role) in APPOINTMENT_MANAGER_ROLES

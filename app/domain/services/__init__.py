"""
Domain Services
"""
from app.domain.services.shift_service import ShiftService
from app.domain.services.reconciliation import reconcile, reconcile_session
from app.domain.services.shift_naming import default_shift_name

__all__ = [
    "ShiftService",
    "reconcile",
    "reconcile_session",
    "default_shift_name",
]

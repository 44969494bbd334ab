"""
State Definitions for the Duty-Session (Shift) Lifecycle
"""
from enum import Enum

from app.core.exceptions import InvalidStateTransitionError


class ShiftStatus(str, Enum):
    """Duty session statuses"""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    # זרימת אישור אחרי סגירה (כש-SHIFT_VERIFICATION_ENABLED)
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    REJECTED = "rejected"

    # ארכוב רך: משמרות לא נמחקות פיזית
    ARCHIVED = "archived"

    @property
    def is_closed(self) -> bool:
        """כל סטטוס מלבד in_progress — קריאות ותשלומים קפואים"""
        return self is not ShiftStatus.IN_PROGRESS


class ShiftType(str, Enum):
    """סוג משמרת — נגזר משעת הפתיחה או נבחר ידנית"""

    MORNING = "morning"
    EVENING = "evening"
    NIGHT = "night"
    CUSTOM = "custom"


# State transitions mapping
SHIFT_TRANSITIONS = {
    ShiftStatus.IN_PROGRESS: [
        ShiftStatus.COMPLETED,
        ShiftStatus.PENDING_VERIFICATION,
    ],
    ShiftStatus.COMPLETED: [ShiftStatus.ARCHIVED],

    # אישור/דחייה ע"י מנהל
    ShiftStatus.PENDING_VERIFICATION: [
        ShiftStatus.VERIFIED,
        ShiftStatus.REJECTED,
    ],
    ShiftStatus.VERIFIED: [ShiftStatus.ARCHIVED],
    # הגשה מחדש אחרי דחייה
    ShiftStatus.REJECTED: [ShiftStatus.PENDING_VERIFICATION],

    ShiftStatus.ARCHIVED: [],
}


def is_valid_transition(current: ShiftStatus | str, target: ShiftStatus | str) -> bool:
    """Check if transition from current to target status is valid"""
    try:
        current_status = ShiftStatus(current)
        target_status = ShiftStatus(target)
    except ValueError:
        return False
    return target_status in SHIFT_TRANSITIONS.get(current_status, [])


def ensure_transition(
    current: ShiftStatus | str,
    target: ShiftStatus | str,
    shift_id: int | None = None,
) -> None:
    """זורק InvalidStateTransitionError אם המעבר לא מוגדר בטבלה"""
    if not is_valid_transition(current, target):
        raise InvalidStateTransitionError(
            current_state=getattr(current, "value", str(current)),
            target_state=getattr(target, "value", str(target)),
            shift_id=shift_id,
        )

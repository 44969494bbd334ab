"""
Duty-session state machine
"""
from app.state_machine.states import (
    ShiftStatus,
    ShiftType,
    SHIFT_TRANSITIONS,
    is_valid_transition,
    ensure_transition,
)

__all__ = [
    "ShiftStatus",
    "ShiftType",
    "SHIFT_TRANSITIONS",
    "is_valid_transition",
    "ensure_transition",
]

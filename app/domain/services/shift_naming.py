"""
Shift Naming - שם וסוג ברירת מחדל למשמרת לפי שעת הפתיחה
"""
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.state_machine.states import ShiftType

# (שעת התחלה כולל, שעת סיום לא כולל): כל השאר לילה
_MORNING_HOURS = (6, 14)
_EVENING_HOURS = (14, 22)


def shift_type_for(moment: datetime) -> ShiftType:
    """06:00–14:00 בוקר, 14:00–22:00 ערב, אחרת לילה"""
    hour = moment.hour
    if _MORNING_HOURS[0] <= hour < _MORNING_HOURS[1]:
        return ShiftType.MORNING
    if _EVENING_HOURS[0] <= hour < _EVENING_HOURS[1]:
        return ShiftType.EVENING
    return ShiftType.NIGHT


def default_shift_name(
    moment: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> tuple[str, ShiftType]:
    """
    מחזיר (שם, סוג) — לדוגמה ("Morning Shift - 19 Oct 2026", ShiftType.MORNING).

    moment נאיבי מתפרש כ-UTC ומומר לאזור הזמן של התחנה.
    """
    if tz_name is None:
        from app.core.config import settings
        tz_name = settings.SHIFT_TIMEZONE

    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(ZoneInfo(tz_name))

    shift_type = shift_type_for(local)
    return f"{shift_type.value.capitalize()} Shift - {local.strftime('%d %b %Y')}", shift_type

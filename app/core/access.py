"""
Access Policy - מי רשאי לפעול על איזו משמרת

המדיניות מוזרקת ל-ShiftService במקום תנאי תפקיד מפוזרים ב-routes,
כך שאפשר להחליף ולבדוק אותה בנפרד ממחזור החיים של המשמרת.
"""
from dataclasses import dataclass
from typing import Iterable, Protocol


@dataclass(frozen=True)
class ShiftActor:
    """המשתמש שמבצע את הפעולה — נגזר מהטוקן"""
    user_id: int
    station_id: int
    role: str


class SessionLike(Protocol):
    user_id: int
    station_id: int


class AccessPolicy(Protocol):
    """ממשק בדיקת הרשאות על משמרת"""

    def is_privileged(self, actor: ShiftActor) -> bool: ...

    def can_access_session(self, actor: ShiftActor, session: SessionLike) -> bool: ...

    def can_review(self, actor: ShiftActor, session: SessionLike) -> bool: ...


class RoleBasedAccessPolicy:
    """
    מדיניות ברירת מחדל:
    - בעל המשמרת רשאי לפעול עליה.
    - תפקיד מורשה (admin/manager) רשאי לפעול על כל משמרת בתחנה שלו.
    - אישור/דחייה/ארכוב — רק תפקיד מורשה.
    """

    def __init__(self, privileged_roles: Iterable[str]):
        self.privileged_roles = frozenset(r.lower() for r in privileged_roles)

    def is_privileged(self, actor: ShiftActor) -> bool:
        return actor.role.lower() in self.privileged_roles

    def can_access_session(self, actor: ShiftActor, session: SessionLike) -> bool:
        if session.station_id != actor.station_id:
            return False
        return session.user_id == actor.user_id or self.is_privileged(actor)

    def can_review(self, actor: ShiftActor, session: SessionLike) -> bool:
        return session.station_id == actor.station_id and self.is_privileged(actor)


def default_access_policy() -> RoleBasedAccessPolicy:
    from app.core.config import settings

    return RoleBasedAccessPolicy(settings.privileged_roles)

"""
FastAPI dependency לאימות בקשות ל-API המשמרות

שימוש:
    @router.post("/shifts")
    async def start_shift(
        actor: ShiftActor = Depends(get_current_actor),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access import ShiftActor
from app.core.auth import verify_token, TokenPayload
from app.db.database import get_db
from app.db.models.station import Station
from app.db.models.user import User
from app.core.logging import get_logger, set_actor_context

logger = get_logger(__name__)

security = HTTPBearer()


async def validate_station_member(
    token_data: TokenPayload,
    db: AsyncSession,
) -> User:
    """
    ולידציה שהמשתמש מהטוקן עדיין פעיל ושייך לתחנה שבטוקן.

    זורק HTTPException 403 אם אחד מהתנאים לא מתקיים.
    """
    user_result = await db.execute(
        select(User).where(User.id == token_data.user_id)
    )
    user = user_result.scalar_one_or_none()
    if not user or not user.is_active:
        logger.error(
            "Shift API access denied — user inactive",
            extra_data={
                "user_id": token_data.user_id,
                "user_found": user is not None,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )

    if user.station_id != token_data.station_id:
        logger.error(
            "Shift API access denied — station mismatch",
            extra_data={
                "user_id": token_data.user_id,
                "token_station_id": token_data.station_id,
                "user_station_id": user.station_id,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token does not match the user's station",
        )

    station_result = await db.execute(
        select(Station).where(Station.id == token_data.station_id)
    )
    station = station_result.scalar_one_or_none()
    if not station or not station.is_active:
        logger.error(
            "Shift API access denied — station inactive or not found",
            extra_data={"station_id": token_data.station_id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Station is not active",
        )

    return user


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> ShiftActor:
    """
    אימות JWT והחזרת ShiftActor.

    התפקיד נלקח מה-DB ולא מהטוקן, כך ששינוי תפקיד נכנס לתוקף מיד.
    זורק 401 אם הטוקן לא תקין, 403 אם המשתמש או התחנה לא פעילים.
    """
    token_data = verify_token(credentials.credentials)
    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user = await validate_station_member(token_data, db)
    set_actor_context(user.id, user.station_id)
    return ShiftActor(user_id=user.id, station_id=user.station_id, role=user.role)

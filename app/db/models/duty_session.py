"""
Duty Session Model - משמרת של עובד משאבה

אגרגט שבבעלות ה-state machine: הקריאות והתשלומים של המשמרת
נוצרים ומשתנים רק דרך ShiftService כל עוד הסטטוס in_progress.
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    Numeric,
    ForeignKey,
    Index,
    Enum as SQLEnum,
    text,
)
from sqlalchemy.orm import relationship

from app.db.database import Base
from app.state_machine.states import ShiftStatus, ShiftType


class DutySession(Base):
    """משמרת — פתיחה, קריאות מונה, תשלומים, סגירה"""

    __tablename__ = "duty_sessions"
    __table_args__ = (
        # משמרת פעילה אחת לכל משתמש: נאכף גם ברמת ה-DB ולא רק בבדיקה מקדימה
        Index(
            "uq_duty_sessions_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
        Index("ix_duty_sessions_station_status", "station_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    shift_name = Column(String(150), nullable=False)
    shift_type = Column(
        SQLEnum(ShiftType, name="shift_type", values_callable=lambda x: [e.value for e in x]),
        default=ShiftType.CUSTOM,
        nullable=False,
    )
    status = Column(
        SQLEnum(ShiftStatus, name="shift_status", values_callable=lambda x: [e.value for e in x]),
        default=ShiftStatus.IN_PROGRESS,
        nullable=False,
    )

    start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    # סכום מטמון של התשלומים: מחושב מחדש באותה טרנזקציה של כל שינוי בתשלומים
    total_payment_collected = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    # מונה גרסה: עולה בכל שינוי, משמש לזיהוי עריכות מקבילות
    version = Column(Integer, default=1, nullable=False)

    # זרימת אישור
    verified_at = Column(DateTime, nullable=True)
    verified_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejection_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", foreign_keys=[user_id])
    verified_by = relationship("User", foreign_keys=[verified_by_user_id])
    nozzle_readings = relationship(
        "NozzleReading",
        back_populates="duty_session",
        order_by="NozzleReading.id",
        cascade="all, delete-orphan",
    )
    session_payments = relationship(
        "SessionPayment",
        back_populates="duty_session",
        order_by="SessionPayment.id",
        cascade="all, delete-orphan",
    )

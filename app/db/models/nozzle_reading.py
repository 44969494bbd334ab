"""
Nozzle Reading Model - קריאות מונה של פייה במשמרת

fuel_dispensed = closing_reading - opening_reading - test_qty
כל עוד אין closing_reading — fuel_dispensed הוא NULL.
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Numeric, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship

from app.db.database import Base


class NozzleReading(Base):
    """קריאת פתיחה/סגירה של פייה אחת במשמרת אחת"""

    __tablename__ = "nozzle_readings"
    __table_args__ = (
        UniqueConstraint("duty_session_id", "nozzle_id", name="uq_nozzle_readings_session_nozzle"),
        CheckConstraint(
            "closing_reading IS NULL OR closing_reading >= opening_reading",
            name="ck_nozzle_readings_closing_gte_opening",
        ),
        CheckConstraint("test_qty >= 0", name="ck_nozzle_readings_test_qty_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    duty_session_id = Column(Integer, ForeignKey("duty_sessions.id"), nullable=False, index=True)
    nozzle_id = Column(Integer, ForeignKey("nozzles.id"), nullable=False, index=True)

    opening_reading = Column(Numeric(12, 3), nullable=False)
    test_qty = Column(Numeric(12, 3), default=Decimal("0.000"), nullable=False)  # ליטרים לבדיקה עצמית
    closing_reading = Column(Numeric(12, 3), nullable=True)
    fuel_dispensed = Column(Numeric(12, 3), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    duty_session = relationship("DutySession", back_populates="nozzle_readings")
    nozzle = relationship("Nozzle")

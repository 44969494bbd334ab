"""
Nozzle Model - פיית תדלוק

הקטלוג מנוהל מחוץ לשירות. מנוע המשמרות נוגע רק בשני שדות:
- is_available — דגל בלעדיות: False = תפוסה ע"י משמרת פתוחה אחת בדיוק
- current_reading — קריאת המונה בסגירת המשמרת האחרונה
"""
from decimal import Decimal
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship

from app.db.database import Base


class Nozzle(Base):
    """פייה במשאבה"""

    __tablename__ = "nozzles"
    __table_args__ = (
        UniqueConstraint("station_id", "code", name="uq_nozzles_station_code"),
    )

    id = Column(Integer, primary_key=True, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    fuel_id = Column(Integer, ForeignKey("fuels.id"), nullable=False)

    price = Column(Numeric(10, 2), nullable=False)  # מחיר לליטר
    current_reading = Column(Numeric(12, 3), default=Decimal("0.000"), nullable=False)

    is_available = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    fuel = relationship("Fuel", lazy="joined")

"""
Station Model - תחנת דלק

התחנה היא גבול ה-tenant: כל משמרת, משתמש ופייה שייכים לתחנה אחת.
ניהול התחנות עצמו מתבצע מחוץ לשירות הזה.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from app.db.database import Base


class Station(Base):
    """מודל תחנת דלק"""

    __tablename__ = "stations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

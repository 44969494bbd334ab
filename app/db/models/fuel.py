"""
Fuel Model - סוג דלק (Petrol, Diesel, ...)
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey

from app.db.database import Base


class Fuel(Base):
    """סוג דלק בקטלוג התחנה"""

    __tablename__ = "fuels"

    id = Column(Integer, primary_key=True, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

"""
User Model - Attendants, Managers and Admins
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey

from app.db.database import Base


class UserRole(str, enum.Enum):
    ATTENDANT = "attendant"
    MANAGER = "manager"
    ADMIN = "admin"


class User(Base):
    """משתמש בתחנה — עובד משאבה, מנהל משמרת או אדמין"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(150), nullable=True)
    # מחרוזת ולא Enum: רשימת התפקידים מנוהלת ע"י שירות ההזדהות
    role = Column(String(30), default=UserRole.ATTENDANT.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

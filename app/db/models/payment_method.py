"""
Payment Method Model - אמצעי תשלום (מזומן, UPI, כרטיס, כרטיס דלק של לקוח)
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey

from app.db.database import Base


class PaymentMethod(Base):
    """אמצעי תשלום בקטלוג התחנה"""

    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    station_id = Column(Integer, ForeignKey("stations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    # אמצעי תשלום יכול להיות משויך ללקוח (כרטיס דלק / חשבון אשראי)
    customer_name = Column(String(150), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

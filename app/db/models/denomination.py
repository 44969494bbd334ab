"""
Denomination Model - ערכי שטרות לספירת מזומן

הקטלוג גלובלי ומשותף לכל התחנות.
"""
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Numeric,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.database import Base


class Denomination(Base):
    """שטר בקטלוג (ערך, תווית, סדר תצוגה)"""

    __tablename__ = "denominations"

    id = Column(Integer, primary_key=True, index=True)
    value = Column(Numeric(10, 2), nullable=False, unique=True)
    label = Column(String(20), nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)


class PaymentDenomination(Base):
    """כמות שטרות מסוג אחד בתשלום מזומן"""

    __tablename__ = "payment_denominations"
    __table_args__ = (
        UniqueConstraint(
            "session_payment_id", "denomination_id", name="uq_payment_denominations_payment_denom"
        ),
        CheckConstraint("count > 0", name="ck_payment_denominations_count_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_payment_id = Column(
        Integer,
        ForeignKey("session_payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    denomination_id = Column(Integer, ForeignKey("denominations.id"), nullable=False)
    count = Column(Integer, nullable=False)

    session_payment = relationship("SessionPayment", back_populates="denominations")
    denomination = relationship("Denomination", lazy="joined")

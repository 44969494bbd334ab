"""
Session Payment Model - תשלום שנגבה במשמרת
"""
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.database import Base


class SessionPayment(Base):
    """רשומת תשלום: אמצעי תשלום, סכום, כמות אופציונלית (ליטרים בכרטיס דלק)
    ופירוט שטרות ומטבעות לתשלום מזומן
    """

    __tablename__ = "session_payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_session_payments_amount_positive"),
        CheckConstraint(
            "coins_amount IS NULL OR coins_amount >= 0",
            name="ck_session_payments_coins_non_negative",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    duty_session_id = Column(Integer, ForeignKey("duty_sessions.id"), nullable=False, index=True)
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=False)

    amount = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=True)
    # מטבעות שנספרו בנוסף לשטרות (תשלום מזומן בלבד)
    coins_amount = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    duty_session = relationship("DutySession", back_populates="session_payments")
    payment_method = relationship("PaymentMethod", lazy="joined")
    denominations = relationship(
        "PaymentDenomination",
        back_populates="session_payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentDenomination.denomination_id",
    )

"""
Database Models
"""
from app.db.models.station import Station
from app.db.models.user import User
from app.db.models.fuel import Fuel
from app.db.models.nozzle import Nozzle
from app.db.models.payment_method import PaymentMethod
from app.db.models.duty_session import DutySession
from app.db.models.nozzle_reading import NozzleReading
from app.db.models.session_payment import SessionPayment
from app.db.models.denomination import Denomination, PaymentDenomination

__all__ = [
    "Station",
    "User",
    "Fuel",
    "Nozzle",
    "PaymentMethod",
    "DutySession",
    "NozzleReading",
    "SessionPayment",
    "Denomination",
    "PaymentDenomination",
]

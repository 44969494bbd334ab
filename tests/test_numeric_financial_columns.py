"""
בדיקות לוידוא שעמודות כספיות וכמויות משתמשות ב-Numeric ולא ב-Float.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import Numeric, inspect, select

from app.db.models.duty_session import DutySession
from app.db.models.nozzle import Nozzle
from app.db.models.nozzle_reading import NozzleReading
from app.db.models.session_payment import SessionPayment


# ============================================================================
# בדיקות סוג עמודה: ולידציה שכל השדות הכספיים הם Numeric
# ============================================================================

_EXPECTED_MONEY_COLUMNS = [
    (Nozzle, "price"),
    (DutySession, "total_payment_collected"),
    (SessionPayment, "amount"),
]

_EXPECTED_VOLUME_COLUMNS = [
    (Nozzle, "current_reading"),
    (NozzleReading, "opening_reading"),
    (NozzleReading, "test_qty"),
    (NozzleReading, "closing_reading"),
    (NozzleReading, "fuel_dispensed"),
    (SessionPayment, "quantity"),
]


def _column_type(model_class, column_name):
    return inspect(model_class).columns[column_name].type


@pytest.mark.unit
@pytest.mark.parametrize("model_class, column_name", _EXPECTED_MONEY_COLUMNS)
def test_money_column_is_numeric(model_class, column_name):
    """כל עמודה כספית חייבת להיות Numeric(10,2) ולא Float"""
    col_type = _column_type(model_class, column_name)

    assert isinstance(col_type, Numeric), (
        f"{model_class.__name__}.{column_name} הוא {type(col_type).__name__} "
        f"במקום Numeric — סיכון לאובדן דיוק בחישובים כספיים"
    )
    assert col_type.precision == 10
    assert col_type.scale == 2
    assert col_type.asdecimal is True


@pytest.mark.unit
@pytest.mark.parametrize("model_class, column_name", _EXPECTED_VOLUME_COLUMNS)
def test_volume_column_is_numeric(model_class, column_name):
    """ליטרים וקריאות מונה — Numeric(12,3)"""
    col_type = _column_type(model_class, column_name)

    assert isinstance(col_type, Numeric)
    assert col_type.precision == 12
    assert col_type.scale == 3


@pytest.mark.asyncio
async def test_values_round_trip_as_decimal(db_session, nozzle):
    """ערכים חוזרים מה-DB כ-Decimal"""
    result = await db_session.execute(
        select(Nozzle.price, Nozzle.current_reading).where(Nozzle.id == nozzle.id)
    )
    price, reading = result.one()

    assert isinstance(price, Decimal)
    assert isinstance(reading, Decimal)
    assert price == Decimal("100.00")
    assert reading == Decimal("1000.000")

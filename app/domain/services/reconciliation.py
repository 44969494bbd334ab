"""
Reconciliation Calculator - התאמת הכנסה צפויה מול גבייה בפועל

פונקציות טהורות: לא נוגעות ב-DB ולא משנות את המשמרת.
קריאה חוזרת על אותם נתונים מחזירה תמיד את אותה תוצאה.

    amount(reading)  = fuel_dispensed × unit_price     (NULL → 0)
    total_fuel_sales = Σ amount(reading)
    total_collected  = Σ payment.amount
    discrepancy      = total_collected − total_fuel_sales

discrepancy חיובי = עודף בקופה, שלילי = חוסר.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

MONEY_QUANTUM = Decimal("0.01")
VOLUME_QUANTUM = Decimal("0.001")
ZERO = Decimal("0")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_volume(value: Decimal) -> Decimal:
    return value.quantize(VOLUME_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ReadingInput:
    """קריאת מונה בודדת כפי שנכנסת לחישוב"""
    reading_id: int
    nozzle_code: str
    fuel_name: str
    unit_price: Decimal
    fuel_dispensed: Optional[Decimal] = None


@dataclass(frozen=True)
class PaymentInput:
    """תשלום בודד כפי שנכנס לחישוב"""
    payment_id: int
    payment_method_id: int
    payment_method_name: str
    amount: Decimal


@dataclass(frozen=True)
class ReadingLine:
    reading_id: int
    nozzle_code: str
    fuel_name: str
    fuel_dispensed: Decimal
    unit_price: Decimal
    amount: Decimal


@dataclass(frozen=True)
class PaymentMethodTotal:
    payment_method_id: int
    payment_method_name: str
    count: int
    amount: Decimal


@dataclass(frozen=True)
class ReconciliationResult:
    """תוצאת התאמה של משמרת"""
    lines: tuple[ReadingLine, ...]
    payment_totals: tuple[PaymentMethodTotal, ...]
    total_fuel_dispensed: Decimal
    total_fuel_sales: Decimal
    total_collected: Decimal
    discrepancy: Decimal
    # None כשלא סופק סכום מטמון להשוואה
    cached_total_matches: Optional[bool] = field(default=None)

    @property
    def is_shortage(self) -> bool:
        return self.discrepancy < 0

    @property
    def is_excess(self) -> bool:
        return self.discrepancy > 0


def reading_amount(reading: ReadingInput) -> Decimal:
    """סכום מכירה לקריאה — מעוגל לאגורה/פייסה"""
    if reading.fuel_dispensed is None:
        return quantize_money(ZERO)
    return quantize_money(reading.fuel_dispensed * reading.unit_price)


def reconcile(
    readings: Iterable[ReadingInput],
    payments: Iterable[PaymentInput],
    cached_total: Optional[Decimal] = None,
) -> ReconciliationResult:
    """
    חישוב התאמה למשמרת.

    הסכום הכולל הוא סכום השורות המעוגלות, כך שהשורות שמוצגות ללקוח
    מסתכמות בדיוק לסה"כ.

    Args:
        readings: קריאות המונה של המשמרת
        payments: התשלומים שנגבו
        cached_total: total_payment_collected השמור על המשמרת (לבדיקת עקביות)
    """
    lines = []
    total_dispensed = ZERO
    for reading in readings:
        dispensed = reading.fuel_dispensed if reading.fuel_dispensed is not None else ZERO
        total_dispensed += dispensed
        lines.append(
            ReadingLine(
                reading_id=reading.reading_id,
                nozzle_code=reading.nozzle_code,
                fuel_name=reading.fuel_name,
                fuel_dispensed=quantize_volume(dispensed),
                unit_price=quantize_money(reading.unit_price),
                amount=reading_amount(reading),
            )
        )

    by_method: "OrderedDict[int, list]" = OrderedDict()
    total_collected = ZERO
    for payment in sorted(payments, key=lambda p: p.payment_id):
        total_collected += payment.amount
        entry = by_method.setdefault(
            payment.payment_method_id, [payment.payment_method_name, 0, ZERO]
        )
        entry[1] += 1
        entry[2] += payment.amount

    total_fuel_sales = quantize_money(sum((line.amount for line in lines), ZERO))
    total_collected = quantize_money(total_collected)

    cached_matches = None
    if cached_total is not None:
        cached_matches = quantize_money(cached_total) == total_collected

    return ReconciliationResult(
        lines=tuple(lines),
        payment_totals=tuple(
            PaymentMethodTotal(
                payment_method_id=method_id,
                payment_method_name=name,
                count=count,
                amount=quantize_money(amount),
            )
            for method_id, (name, count, amount) in by_method.items()
        ),
        total_fuel_dispensed=quantize_volume(total_dispensed),
        total_fuel_sales=total_fuel_sales,
        total_collected=total_collected,
        discrepancy=total_collected - total_fuel_sales,
        cached_total_matches=cached_matches,
    )


def reconcile_session(session) -> ReconciliationResult:
    """
    התאמה עבור DutySession טעון (nozzle_readings.nozzle.fuel + session_payments.payment_method).

    קורא בלבד — לא משנה אף שדה במשמרת.
    """
    readings = [
        ReadingInput(
            reading_id=r.id,
            nozzle_code=r.nozzle.code,
            fuel_name=r.nozzle.fuel.name if r.nozzle.fuel else "",
            unit_price=Decimal(r.nozzle.price),
            fuel_dispensed=Decimal(r.fuel_dispensed) if r.fuel_dispensed is not None else None,
        )
        for r in session.nozzle_readings
    ]
    payments = [
        PaymentInput(
            payment_id=p.id,
            payment_method_id=p.payment_method_id,
            payment_method_name=p.payment_method.name if p.payment_method else "",
            amount=Decimal(p.amount),
        )
        for p in session.session_payments
    ]
    return reconcile(readings, payments, cached_total=session.total_payment_collected)

"""
Shift Service - מחזור החיים של משמרת עובד משאבה

כל פעולה משנה רצה בטרנזקציה אחת:
1. נעילת שורת המשמרת (SELECT ... FOR UPDATE) + בדיקת הרשאה, סטטוס וגרסה
2. שינוי קריאות / תשלומים / פיות
3. העלאת version
4. commit, או rollback מלא על כל שגיאה

פתיחת משמרת תופסת את הפיות ב-compare-and-set:
UPDATE nozzles SET is_available = false WHERE id IN (...) AND is_available
ומוודאת שמספר השורות שעודכנו שווה למספר הפיות שהתבקשו.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select, update, func
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from app.core.access import AccessPolicy, ShiftActor, default_access_policy
from app.core.config import settings
from app.core.exceptions import (
    AppException,
    ConcurrentModificationError,
    ErrorCode,
    ForbiddenException,
    InvalidReadingError,
    NoClosingReadingsError,
    NotFoundException,
    NozzlesUnavailableError,
    ShiftAlreadyActiveError,
    ShiftNotActiveError,
    ShiftNotFoundError,
    TransientStoreError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.core.validation import AmountValidator, TextSanitizer, VolumeValidator, to_decimal
from app.db.models.denomination import Denomination, PaymentDenomination
from app.db.models.duty_session import DutySession
from app.db.models.nozzle import Nozzle
from app.db.models.nozzle_reading import NozzleReading
from app.db.models.payment_method import PaymentMethod
from app.db.models.session_payment import SessionPayment
from app.db.models.user import User
from app.domain.services.reconciliation import (
    ReconciliationResult,
    quantize_money,
    reconcile_session,
)
from app.domain.services.shift_naming import default_shift_name
from app.state_machine.states import ShiftStatus, ShiftType, ensure_transition

logger = get_logger(__name__)

SHIFT_NAME_MAX_LENGTH = 150
NOTES_MAX_LENGTH = 2000

# ערך ברירת מחדל לשדות אופציונליים בעדכון חלקי: "לא נשלח", להבדיל מ-None שמנקה
UNSET: Any = object()


def _session_load_options():
    """טעינת המשמרת עם קריאות (פייה + דלק) ותשלומים (אמצעי תשלום)"""
    return (
        selectinload(DutySession.nozzle_readings).selectinload(NozzleReading.nozzle),
        selectinload(DutySession.session_payments),
    )


class ShiftService:
    """
    Service for the duty-session lifecycle: start, readings, payments, completion,
    history and the verification flow.
    """

    def __init__(
        self,
        db: AsyncSession,
        access_policy: Optional[AccessPolicy] = None,
        verification_enabled: Optional[bool] = None,
    ):
        self.db = db
        self.access_policy = access_policy or default_access_policy()
        if verification_enabled is None:
            verification_enabled = settings.SHIFT_VERIFICATION_ENABLED
        self.verification_enabled = verification_enabled

    # ==================== טרנזקציות ====================

    @asynccontextmanager
    async def _transaction(self, operation: str):
        """commit בסוף הבלוק, rollback מלא על כל חריגה"""
        try:
            yield
            await self.db.commit()
        except AppException:
            await self.db.rollback()
            raise
        except IntegrityError:
            await self.db.rollback()
            raise
        except DBAPIError as e:
            # OperationalError ודומיו: lock/statement timeout, serialization failure,
            # "database is locked" ב-SQLite
            await self.db.rollback()
            logger.warning(
                "Store error, transaction rolled back",
                extra_data={"operation": operation, "error": str(e)}
            )
            raise TransientStoreError(operation) from e

    async def _load_session(self, shift_id: int) -> Optional[DutySession]:
        result = await self.db.execute(
            select(DutySession)
            .options(*_session_load_options())
            .where(DutySession.id == shift_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _lock_session(self, shift_id: int) -> Optional[DutySession]:
        result = await self.db.execute(
            select(DutySession)
            .where(DutySession.id == shift_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _lock_mutable_session(
        self,
        actor: ShiftActor,
        shift_id: int,
        expected_version: Optional[int] = None,
    ) -> DutySession:
        """
        נעילת משמרת לשינוי.

        משמרת שהמשתמש לא רשאי לגשת אליה מדווחת כלא קיימת.
        """
        session = await self._lock_session(shift_id)
        if not session or not self.access_policy.can_access_session(actor, session):
            raise ShiftNotFoundError(shift_id)

        if session.status != ShiftStatus.IN_PROGRESS:
            raise ShiftNotActiveError(shift_id, ShiftStatus(session.status).value)

        if expected_version is not None and session.version != expected_version:
            raise ConcurrentModificationError(shift_id, expected_version, session.version)

        return session

    async def _lock_reviewable_session(self, actor: ShiftActor, shift_id: int) -> DutySession:
        session = await self._lock_session(shift_id)
        if not session or not self.access_policy.can_access_session(actor, session):
            raise ShiftNotFoundError(shift_id)
        if not self.access_policy.can_review(actor, session):
            raise ForbiddenException(
                "Only a manager can review shifts",
                details={"shift_id": shift_id}
            )
        return session

    @staticmethod
    def _touch(session: DutySession) -> None:
        session.version = (session.version or 0) + 1
        session.updated_at = datetime.utcnow()

    @staticmethod
    def _decimal(value: Any, field: str) -> Decimal:
        try:
            return to_decimal(value)
        except ValueError as e:
            raise ValidationException(str(e), field=field)

    # ==================== פתיחה ====================

    @log_async_operation("shift.start")
    async def start_shift(
        self,
        actor: ShiftActor,
        shift_name: Optional[str],
        nozzle_ids: Sequence[int],
        shift_type: Optional[ShiftType] = None,
    ) -> DutySession:
        """
        פתיחת משמרת ותפיסת הפיות שלה.

        Raises:
            ShiftAlreadyActiveError: למשתמש כבר יש משמרת פתוחה
            NotFoundException: פייה לא קיימת / לא פעילה / לא בתחנה
            NozzlesUnavailableError: פייה תפוסה ע"י משמרת אחרת
        """
        nozzle_ids = list(nozzle_ids or [])
        if not nozzle_ids:
            raise ValidationException("Select at least one nozzle", field="nozzle_ids")
        if len(set(nozzle_ids)) != len(nozzle_ids):
            raise ValidationException("Nozzle list contains duplicates", field="nozzle_ids")

        default_name, clock_type = default_shift_name()
        if shift_name is None:
            name = default_name
        else:
            name = TextSanitizer.sanitize(shift_name, max_length=SHIFT_NAME_MAX_LENGTH)
            if not name:
                raise ValidationException("Shift name is required", field="shift_name")
        shift_type = ShiftType(shift_type) if shift_type else clock_type

        async with self._transaction("start_shift"):
            # 1. נעילת המשתמש: מסדר פתיחות מקבילות של אותו עובד
            user_result = await self.db.execute(
                select(User).where(User.id == actor.user_id).with_for_update()
                .execution_options(populate_existing=True)
            )
            user = user_result.scalar_one_or_none()
            if not user or not user.is_active:
                raise NotFoundException("User", actor.user_id)

            # 2. בדיקה חוזרת תחת הנעילה
            active_result = await self.db.execute(
                select(DutySession.id).where(
                    DutySession.user_id == actor.user_id,
                    DutySession.status == ShiftStatus.IN_PROGRESS,
                )
            )
            active_id = active_result.scalars().first()
            if active_id is not None:
                raise ShiftAlreadyActiveError(actor.user_id, active_id)

            # 3. נעילת הפיות לפי סדר id
            nozzle_result = await self.db.execute(
                select(Nozzle)
                .where(Nozzle.id.in_(nozzle_ids))
                .order_by(Nozzle.id)
                .with_for_update(of=Nozzle)
                .execution_options(populate_existing=True)
            )
            nozzles = [
                n for n in nozzle_result.scalars().all()
                if n.station_id == actor.station_id and n.is_active
            ]
            missing = sorted(set(nozzle_ids) - {n.id for n in nozzles})
            if missing:
                raise NotFoundException(
                    "Nozzle",
                    ", ".join(str(i) for i in missing),
                    error_code=ErrorCode.NOZZLE_NOT_FOUND
                )

            busy = [n.code for n in nozzles if not n.is_available]
            if busy:
                raise NozzlesUnavailableError(busy)

            openings = {n.id: n.current_reading for n in nozzles}
            codes = [n.code for n in nozzles]

            # 4. compare-and-set
            claim = await self.db.execute(
                update(Nozzle)
                .where(
                    Nozzle.id.in_(nozzle_ids),
                    Nozzle.is_available == True,  # noqa: E712
                )
                .values(is_available=False, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount != len(nozzle_ids):
                raise NozzlesUnavailableError(codes)
            for n in nozzles:
                set_committed_value(n, "is_available", False)

            # 5. המשמרת והקריאות
            session = DutySession(
                station_id=actor.station_id,
                user_id=actor.user_id,
                shift_name=name,
                shift_type=shift_type,
                status=ShiftStatus.IN_PROGRESS,
                start_time=datetime.utcnow(),
                total_payment_collected=Decimal("0.00"),
                version=1,
            )
            self.db.add(session)
            try:
                await self.db.flush()
            except IntegrityError:
                # האינדקס החלקי על משמרת פעילה אחת לעובד
                raise ShiftAlreadyActiveError(actor.user_id)

            for nozzle_id in sorted(nozzle_ids):
                self.db.add(
                    NozzleReading(
                        duty_session_id=session.id,
                        nozzle_id=nozzle_id,
                        opening_reading=openings[nozzle_id],
                        test_qty=Decimal("0.000"),
                    )
                )

        logger.info(
            "Shift started",
            extra_data={
                "shift_id": session.id,
                "user_id": actor.user_id,
                "station_id": actor.station_id,
                "nozzle_ids": sorted(nozzle_ids),
            }
        )
        return await self._load_session(session.id)

    # ==================== קריאות מונה ====================

    @log_async_operation("shift.update_reading")
    async def update_reading(
        self,
        actor: ShiftActor,
        shift_id: int,
        reading_id: int,
        test_qty: Any = None,
        closing_reading: Any = None,
        expected_version: Optional[int] = None,
    ) -> DutySession:
        """
        עדכון test_qty ו/או closing_reading של קריאה.

        fuel_dispensed = closing - opening - test_qty, מחושב עם הערך החדש
        אם סופק ועם השמור אם לא. ערך שלילי נדחה, לא נחתך ל-0.
        """
        if test_qty is None and closing_reading is None:
            raise ValidationException("Nothing to update: send test_qty or closing_reading")

        new_test = None
        if test_qty is not None:
            new_test = self._decimal(test_qty, "test_qty")
            ok, error = VolumeValidator.validate(new_test)
            if not ok:
                raise InvalidReadingError(f"Test quantity: {error}", reading_id)

        new_closing = None
        if closing_reading is not None:
            new_closing = self._decimal(closing_reading, "closing_reading")
            ok, error = VolumeValidator.validate(new_closing)
            if not ok:
                raise InvalidReadingError(f"Closing reading: {error}", reading_id)

        async with self._transaction("update_reading"):
            session = await self._lock_mutable_session(actor, shift_id, expected_version)

            result = await self.db.execute(
                select(NozzleReading).where(
                    NozzleReading.id == reading_id,
                    NozzleReading.duty_session_id == session.id,
                )
                .execution_options(populate_existing=True)
            )
            reading = result.scalar_one_or_none()
            if not reading:
                raise NotFoundException("Reading", reading_id, error_code=ErrorCode.READING_NOT_FOUND)

            opening = to_decimal(reading.opening_reading)
            effective_test = new_test if new_test is not None else to_decimal(reading.test_qty)
            effective_closing = new_closing
            if effective_closing is None and reading.closing_reading is not None:
                effective_closing = to_decimal(reading.closing_reading)

            dispensed = None
            if effective_closing is not None:
                if effective_closing < opening:
                    raise InvalidReadingError(
                        "Closing reading cannot be lower than the opening reading",
                        reading_id,
                        details={
                            "opening_reading": str(opening),
                            "closing_reading": str(effective_closing),
                        }
                    )
                dispensed = effective_closing - opening - effective_test
                if dispensed < 0:
                    raise InvalidReadingError(
                        "Test quantity is larger than the metered volume",
                        reading_id,
                        details={
                            "metered": str(effective_closing - opening),
                            "test_qty": str(effective_test),
                        }
                    )

            reading.test_qty = effective_test
            reading.closing_reading = effective_closing
            reading.fuel_dispensed = dispensed
            reading.updated_at = datetime.utcnow()
            self._touch(session)

        logger.info(
            "Reading updated",
            extra_data={
                "shift_id": shift_id,
                "reading_id": reading_id,
                "fuel_dispensed": str(dispensed) if dispensed is not None else None,
            }
        )
        return await self._load_session(shift_id)

    # ==================== תשלומים ====================

    def _validate_amount(self, amount: Any) -> Decimal:
        value = self._decimal(amount, "amount")
        ok, error = AmountValidator.validate(value)
        if not ok:
            raise ValidationException(error, field="amount", error_code=ErrorCode.INVALID_AMOUNT)
        return value

    def _validate_quantity(self, quantity: Any) -> Optional[Decimal]:
        if quantity is None:
            return None
        value = self._decimal(quantity, "quantity")
        ok, error = VolumeValidator.validate(value)
        if not ok:
            raise ValidationException(error, field="quantity")
        return value

    def _validate_coins(self, coins_amount: Any) -> Optional[Decimal]:
        if coins_amount is None:
            return None
        value = self._decimal(coins_amount, "coins_amount")
        if value < 0:
            raise ValidationException(
                "Coins amount cannot be negative",
                field="coins_amount",
                error_code=ErrorCode.INVALID_AMOUNT,
            )
        if value != quantize_money(value):
            raise ValidationException(
                "Coins amount cannot have more than 2 decimal places",
                field="coins_amount",
                error_code=ErrorCode.INVALID_AMOUNT,
            )
        return value

    @staticmethod
    def _validate_denomination_counts(
        denominations: Optional[Sequence[tuple[int, int]]],
    ) -> Optional[dict[int, int]]:
        """
        (denomination_id, count) -> מילון. כמות 0 מושמטת.
        None פירושו "בלי שינוי", רשימה ריקה מוחקת את הפירוט.
        """
        if denominations is None:
            return None
        counts: dict[int, int] = {}
        for denomination_id, count in denominations:
            if denomination_id in counts:
                raise ValidationException(
                    "Denomination listed more than once",
                    field="denominations",
                    details={"denomination_id": denomination_id},
                )
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise ValidationException(
                    "Denomination count must be a non-negative whole number",
                    field="denominations",
                    details={"denomination_id": denomination_id},
                )
            counts[denomination_id] = count
        return {k: v for k, v in counts.items() if v > 0}

    async def _load_denominations(self, counts: dict[int, int]) -> dict[int, Denomination]:
        if not counts:
            return {}
        result = await self.db.execute(
            select(Denomination).where(
                Denomination.id.in_(list(counts)),
                Denomination.is_active == True,  # noqa: E712
            )
        )
        found = {d.id: d for d in result.scalars().all()}
        missing = sorted(set(counts) - set(found))
        if missing:
            raise NotFoundException(
                "Denomination",
                ", ".join(str(i) for i in missing),
                error_code=ErrorCode.DENOMINATION_NOT_FOUND,
            )
        return found

    @staticmethod
    def _check_breakdown(payment: SessionPayment) -> None:
        """
        תשלום עם פירוט שטרות/מטבעות: סכום הפירוט חייב להיות שווה לסכום התשלום.
        """
        if not payment.denominations and payment.coins_amount is None:
            return
        breakdown = sum(
            (to_decimal(d.denomination.value) * d.count for d in payment.denominations),
            Decimal("0"),
        ) + to_decimal(payment.coins_amount or 0)
        amount = to_decimal(payment.amount)
        if quantize_money(breakdown) != quantize_money(amount):
            raise ValidationException(
                "Cash breakdown does not add up to the payment amount",
                field="denominations",
                error_code=ErrorCode.INVALID_AMOUNT,
                details={
                    "amount": str(quantize_money(amount)),
                    "breakdown_total": str(quantize_money(breakdown)),
                },
            )

    async def _apply_breakdown(
        self,
        payment: SessionPayment,
        counts: Optional[dict[int, int]],
    ) -> None:
        """מחליף את פירוט השטרות (אם נשלח) ומוודא שהסכום מתאים"""
        if counts is not None:
            catalog = await self._load_denominations(counts)
            if payment.denominations:
                # מחיקת השורות הישנות לפני הוספת החדשות (unique על payment+denomination)
                payment.denominations.clear()
                await self.db.flush()
            payment.denominations = [
                PaymentDenomination(denomination=catalog[denomination_id], count=count)
                for denomination_id, count in sorted(counts.items())
            ]
        self._check_breakdown(payment)

    async def _get_payment_method(self, station_id: int, payment_method_id: int) -> PaymentMethod:
        result = await self.db.execute(
            select(PaymentMethod).where(
                PaymentMethod.id == payment_method_id,
                PaymentMethod.station_id == station_id,
                PaymentMethod.is_active == True,  # noqa: E712
            )
        )
        method = result.scalar_one_or_none()
        if not method:
            raise NotFoundException(
                "Payment method", payment_method_id, error_code=ErrorCode.PAYMENT_METHOD_NOT_FOUND
            )
        return method

    async def _get_payment(self, session: DutySession, payment_id: int) -> SessionPayment:
        result = await self.db.execute(
            select(SessionPayment).where(
                SessionPayment.id == payment_id,
                SessionPayment.duty_session_id == session.id,
            )
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundException("Payment", payment_id, error_code=ErrorCode.PAYMENT_NOT_FOUND)
        return payment

    async def _recompute_total(self, session: DutySession) -> Decimal:
        """SUM(amount) על התשלומים שנשארו, באותה טרנזקציה"""
        await self.db.flush()
        result = await self.db.execute(
            select(func.coalesce(func.sum(SessionPayment.amount), 0))
            .where(SessionPayment.duty_session_id == session.id)
        )
        total = quantize_money(to_decimal(result.scalar_one()))
        session.total_payment_collected = total
        return total

    async def list_denominations(self) -> list[Denomination]:
        """קטלוג השטרות הפעילים לפי סדר תצוגה"""
        result = await self.db.execute(
            select(Denomination)
            .where(Denomination.is_active == True)  # noqa: E712
            .order_by(Denomination.sort_order, Denomination.id)
        )
        return list(result.scalars().all())

    @log_async_operation("shift.add_payment")
    async def add_payment(
        self,
        actor: ShiftActor,
        shift_id: int,
        payment_method_id: int,
        amount: Any,
        quantity: Any = None,
        expected_version: Optional[int] = None,
        denominations: Optional[Sequence[tuple[int, int]]] = None,
        coins_amount: Any = None,
    ) -> DutySession:
        """
        הוספת תשלום. לתשלום מזומן אפשר לצרף פירוט שטרות
        (denomination_id, count) וסכום מטבעות; הפירוט נשמר באותה טרנזקציה.
        """
        amount = self._validate_amount(amount)
        quantity = self._validate_quantity(quantity)
        coins_amount = self._validate_coins(coins_amount)
        counts = self._validate_denomination_counts(denominations)

        async with self._transaction("add_payment"):
            session = await self._lock_mutable_session(actor, shift_id, expected_version)
            await self._get_payment_method(session.station_id, payment_method_id)

            payment = SessionPayment(
                duty_session_id=session.id,
                payment_method_id=payment_method_id,
                amount=amount,
                quantity=quantity,
                coins_amount=coins_amount,
            )
            await self._apply_breakdown(payment, counts or {})
            self.db.add(payment)
            total = await self._recompute_total(session)
            self._touch(session)

        logger.info(
            "Payment added",
            extra_data={
                "shift_id": shift_id,
                "payment_id": payment.id,
                "amount": str(amount),
                "denominations": counts or {},
                "total_payment_collected": str(total),
            }
        )
        return await self._load_session(shift_id)

    @log_async_operation("shift.update_payment")
    async def update_payment(
        self,
        actor: ShiftActor,
        shift_id: int,
        payment_id: int,
        payment_method_id: Optional[int] = None,
        amount: Any = None,
        quantity: Any = UNSET,
        expected_version: Optional[int] = None,
        denominations: Any = UNSET,
        coins_amount: Any = UNSET,
    ) -> DutySession:
        """
        עדכון חלקי: רק השדות שסופקו משתנים.

        quantity / coins_amount: None מנקה את הערך, UNSET משאיר אותו.
        denominations: רשימה מחליפה את הפירוט (ריקה מוחקת), UNSET משאיר אותו.
        """
        changes = (payment_method_id, amount)
        optional_changes = (quantity, denominations, coins_amount)
        if all(c is None for c in changes) and all(c is UNSET for c in optional_changes):
            raise ValidationException("Nothing to update")

        new_amount = self._validate_amount(amount) if amount is not None else None
        new_quantity = self._validate_quantity(quantity) if quantity is not UNSET else UNSET
        new_coins = self._validate_coins(coins_amount) if coins_amount is not UNSET else UNSET
        counts = None
        if denominations is not UNSET:
            counts = self._validate_denomination_counts(denominations or [])

        async with self._transaction("update_payment"):
            session = await self._lock_mutable_session(actor, shift_id, expected_version)
            payment = await self._get_payment(session, payment_id)

            if payment_method_id is not None:
                await self._get_payment_method(session.station_id, payment_method_id)
                payment.payment_method_id = payment_method_id
            if new_amount is not None:
                payment.amount = new_amount
            if new_quantity is not UNSET:
                payment.quantity = new_quantity
            if new_coins is not UNSET:
                payment.coins_amount = new_coins
            await self._apply_breakdown(payment, counts)
            payment.updated_at = datetime.utcnow()

            total = await self._recompute_total(session)
            self._touch(session)

        logger.info(
            "Payment updated",
            extra_data={
                "shift_id": shift_id,
                "payment_id": payment_id,
                "total_payment_collected": str(total),
            }
        )
        return await self._load_session(shift_id)

    @log_async_operation("shift.delete_payment")
    async def delete_payment(
        self,
        actor: ShiftActor,
        shift_id: int,
        payment_id: int,
        expected_version: Optional[int] = None,
    ) -> DutySession:
        async with self._transaction("delete_payment"):
            session = await self._lock_mutable_session(actor, shift_id, expected_version)
            payment = await self._get_payment(session, payment_id)
            await self.db.delete(payment)
            total = await self._recompute_total(session)
            self._touch(session)

        logger.info(
            "Payment deleted",
            extra_data={
                "shift_id": shift_id,
                "payment_id": payment_id,
                "total_payment_collected": str(total),
            }
        )
        return await self._load_session(shift_id)

    # ==================== סגירה ====================

    @log_async_operation("shift.complete")
    async def complete_shift(
        self,
        actor: ShiftActor,
        shift_id: int,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> DutySession:
        """
        סגירת משמרת.

        באותה טרנזקציה: קידום current_reading של כל פייה עם קריאת סגירה
        ושחרור כל פיות המשמרת (is_available = true).
        """
        async with self._transaction("complete_shift"):
            session = await self._lock_mutable_session(actor, shift_id, expected_version)

            readings_result = await self.db.execute(
                select(NozzleReading)
                .where(NozzleReading.duty_session_id == session.id)
                .order_by(NozzleReading.nozzle_id)
                .execution_options(populate_existing=True)
            )
            readings = readings_result.scalars().all()
            closed = [r for r in readings if r.closing_reading is not None]
            if not closed:
                raise NoClosingReadingsError(shift_id)

            nozzle_result = await self.db.execute(
                select(Nozzle)
                .where(Nozzle.id.in_([r.nozzle_id for r in readings]))
                .order_by(Nozzle.id)
                .with_for_update(of=Nozzle)
                .execution_options(populate_existing=True)
            )
            nozzles = {n.id: n for n in nozzle_result.scalars().all()}

            now = datetime.utcnow()
            for reading in closed:
                nozzles[reading.nozzle_id].current_reading = reading.closing_reading
            for nozzle in nozzles.values():
                nozzle.is_available = True
                nozzle.updated_at = now

            target = (
                ShiftStatus.PENDING_VERIFICATION
                if self.verification_enabled
                else ShiftStatus.COMPLETED
            )
            ensure_transition(session.status, target, shift_id)

            session.status = target
            session.end_time = now
            if notes is not None:
                session.notes = TextSanitizer.sanitize(notes, max_length=NOTES_MAX_LENGTH) or None
            self._touch(session)

        logger.info(
            "Shift completed",
            extra_data={
                "shift_id": shift_id,
                "user_id": session.user_id,
                "status": target.value,
                "released_nozzles": sorted(nozzles),
            }
        )
        return await self._load_session(shift_id)

    # ==================== קריאה ====================

    async def get_active_shift(self, actor: ShiftActor) -> Optional[DutySession]:
        """המשמרת הפתוחה של המשתמש, או None"""
        result = await self.db.execute(
            select(DutySession)
            .options(*_session_load_options())
            .where(
                DutySession.user_id == actor.user_id,
                DutySession.status == ShiftStatus.IN_PROGRESS,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_shift(self, actor: ShiftActor, shift_id: int) -> DutySession:
        session = await self._load_session(shift_id)
        if not session:
            raise ShiftNotFoundError(shift_id)
        if not self.access_policy.can_access_session(actor, session):
            raise ForbiddenException(
                "You do not have access to this shift",
                details={"shift_id": shift_id}
            )
        return session

    async def get_summary(
        self,
        actor: ShiftActor,
        shift_id: int,
    ) -> tuple[DutySession, ReconciliationResult]:
        """סיכום והתאמה — קריאה בלבד"""
        session = await self.get_shift(actor, shift_id)
        return session, reconcile_session(session)

    async def list_shifts(
        self,
        actor: ShiftActor,
        status: Optional[ShiftStatus] = None,
        user_id: Optional[int] = None,
        shift_type: Optional[ShiftType] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        end_from: Optional[datetime] = None,
        end_to: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[DutySession], int]:
        """
        היסטוריית משמרות בתחנה.

        ברירת מחדל: כל הסטטוסים מלבד in_progress.
        עובד לא מורשה רואה רק את המשמרות שלו.
        """
        conditions = [DutySession.station_id == actor.station_id]

        if status is not None:
            conditions.append(DutySession.status == ShiftStatus(status))
        else:
            conditions.append(DutySession.status != ShiftStatus.IN_PROGRESS)

        if not self.access_policy.is_privileged(actor):
            if user_id is not None and user_id != actor.user_id:
                raise ForbiddenException("You can only view your own shifts")
            user_id = actor.user_id
        if user_id is not None:
            conditions.append(DutySession.user_id == user_id)

        if shift_type is not None:
            conditions.append(DutySession.shift_type == ShiftType(shift_type))
        if start_from is not None:
            conditions.append(DutySession.start_time >= start_from)
        if start_to is not None:
            conditions.append(DutySession.start_time <= start_to)
        if end_from is not None:
            conditions.append(DutySession.end_time >= end_from)
        if end_to is not None:
            conditions.append(DutySession.end_time <= end_to)

        limit = max(1, min(limit, settings.SHIFT_HISTORY_MAX_PAGE_SIZE))
        offset = max(0, offset)

        count_result = await self.db.execute(
            select(func.count(DutySession.id)).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.db.execute(
            select(DutySession)
            .where(*conditions)
            .order_by(DutySession.start_time.desc(), DutySession.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    # ==================== אישור וארכוב ====================

    @log_async_operation("shift.verify")
    async def verify_shift(
        self,
        actor: ShiftActor,
        shift_id: int,
        approved: bool,
        notes: Optional[str] = None,
    ) -> DutySession:
        """אישור או דחייה של משמרת שממתינה לאישור — מנהל בלבד"""
        target = ShiftStatus.VERIFIED if approved else ShiftStatus.REJECTED

        async with self._transaction("verify_shift"):
            session = await self._lock_reviewable_session(actor, shift_id)
            ensure_transition(session.status, target, shift_id)

            session.status = target
            session.verified_at = datetime.utcnow()
            session.verified_by_user_id = actor.user_id
            session.rejection_notes = (
                None if approved
                else TextSanitizer.sanitize(notes, max_length=NOTES_MAX_LENGTH) or None
            )
            self._touch(session)

        logger.info(
            "Shift reviewed",
            extra_data={
                "shift_id": shift_id,
                "reviewer_id": actor.user_id,
                "status": target.value,
            }
        )
        return await self._load_session(shift_id)

    @log_async_operation("shift.resubmit")
    async def resubmit_shift(self, actor: ShiftActor, shift_id: int) -> DutySession:
        async with self._transaction("resubmit_shift"):
            session = await self._lock_session(shift_id)
            if not session or not self.access_policy.can_access_session(actor, session):
                raise ShiftNotFoundError(shift_id)
            ensure_transition(session.status, ShiftStatus.PENDING_VERIFICATION, shift_id)

            session.status = ShiftStatus.PENDING_VERIFICATION
            session.verified_at = None
            session.verified_by_user_id = None
            session.rejection_notes = None
            self._touch(session)

        logger.info("Shift resubmitted", extra_data={"shift_id": shift_id})
        return await self._load_session(shift_id)

    @log_async_operation("shift.archive")
    async def archive_shift(self, actor: ShiftActor, shift_id: int) -> DutySession:
        async with self._transaction("archive_shift"):
            session = await self._lock_reviewable_session(actor, shift_id)
            ensure_transition(session.status, ShiftStatus.ARCHIVED, shift_id)
            session.status = ShiftStatus.ARCHIVED
            self._touch(session)

        logger.info("Shift archived", extra_data={"shift_id": shift_id})
        return await self._load_session(shift_id)

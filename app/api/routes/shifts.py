"""
Shift API Routes - משמרות עובדי משאבה

כל ה-endpoints דורשים Bearer token. ערכים מספריים (ליטרים, מחירים, סכומים)
מוחזרים כמחרוזות Decimal ולא כ-float.
"""
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_actor
from app.core.access import ShiftActor
from app.core.config import settings
from app.core.exceptions import ErrorCode, NotFoundException
from app.core.logging import get_logger
from app.core.validation import sanitized_text_validator
from app.db.database import get_db
from app.db.models.duty_session import DutySession
from app.domain.services.reconciliation import ReconciliationResult
from app.domain.services.shift_naming import default_shift_name
from app.domain.services.shift_service import ShiftService
from app.state_machine.states import ShiftStatus, ShiftType

logger = get_logger(__name__)

router = APIRouter()


def get_shift_service(db: AsyncSession = Depends(get_db)) -> ShiftService:
    return ShiftService(db)


# ==================== Request schemas ====================


class StartShiftRequest(BaseModel):
    """פתיחת משמרת: בלי shift_name נקבע שם ברירת מחדל לפי השעה, שם ריק נדחה"""
    shift_name: Optional[str] = None
    nozzle_ids: List[int] = Field(..., min_length=1)
    shift_type: Optional[ShiftType] = None

    @field_validator("shift_name")
    @classmethod
    def sanitize_name(cls, v: Optional[str]) -> Optional[str]:
        return sanitized_text_validator(v, max_length=150)


class ReadingUpdateRequest(BaseModel):
    test_qty: Optional[Decimal] = None
    closing_reading: Optional[Decimal] = None
    expected_version: Optional[int] = None


class DenominationCountRequest(BaseModel):
    denomination_id: int
    count: int = Field(..., ge=0)


class PaymentCreateRequest(BaseModel):
    payment_method_id: int
    amount: Decimal
    quantity: Optional[Decimal] = None
    # פירוט מזומן: שטרות + מטבעות, סכומם חייב להיות שווה ל-amount
    denominations: Optional[List[DenominationCountRequest]] = None
    coins_amount: Optional[Decimal] = None
    expected_version: Optional[int] = None


class PaymentUpdateRequest(BaseModel):
    """
    עדכון חלקי. null מפורש ב-quantity / coins_amount מנקה את הערך,
    denominations ריק מוחק את פירוט השטרות; שדה שלא נשלח לא משתנה.
    """
    payment_method_id: Optional[int] = None
    amount: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    denominations: Optional[List[DenominationCountRequest]] = None
    coins_amount: Optional[Decimal] = None
    expected_version: Optional[int] = None


class CompleteShiftRequest(BaseModel):
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class VerifyShiftRequest(BaseModel):
    approved: bool
    notes: Optional[str] = None


# ==================== Response schemas ====================


class ReadingResponse(BaseModel):
    id: int
    nozzle_id: int
    nozzle_code: str
    fuel_name: Optional[str]
    unit_price: Decimal
    opening_reading: Decimal
    test_qty: Decimal
    closing_reading: Optional[Decimal]
    fuel_dispensed: Optional[Decimal]


class PaymentDenominationResponse(BaseModel):
    denomination_id: int
    label: str
    value: Decimal
    count: int


class PaymentResponse(BaseModel):
    id: int
    payment_method_id: int
    payment_method_name: Optional[str]
    amount: Decimal
    quantity: Optional[Decimal]
    coins_amount: Optional[Decimal]
    denominations: List[PaymentDenominationResponse]
    created_at: Optional[datetime]


class DenominationResponse(BaseModel):
    id: int
    value: Decimal
    label: str
    sort_order: int

    model_config = {"from_attributes": True}


class ShiftListItem(BaseModel):
    """משמרת בלי קריאות ותשלומים — להיסטוריה"""
    id: int
    station_id: int
    user_id: int
    shift_name: str
    shift_type: ShiftType
    status: ShiftStatus
    start_time: datetime
    end_time: Optional[datetime]
    total_payment_collected: Decimal
    version: int

    model_config = {"from_attributes": True}


class ShiftResponse(ShiftListItem):
    notes: Optional[str]
    verified_at: Optional[datetime]
    verified_by_user_id: Optional[int]
    rejection_notes: Optional[str]
    readings: List[ReadingResponse]
    payments: List[PaymentResponse]


class ShiftListResponse(BaseModel):
    items: List[ShiftListItem]
    total: int
    limit: int
    offset: int


class PaymentsResponse(BaseModel):
    """תשובה לשינוי בתשלומים — הרשימה המעודכנת והסכום המחושב מחדש"""
    shift_id: int
    version: int
    total_payment_collected: Decimal
    payments: List[PaymentResponse]


class ReconciliationLineResponse(BaseModel):
    reading_id: int
    nozzle_code: str
    fuel_name: str
    fuel_dispensed: Decimal
    unit_price: Decimal
    amount: Decimal


class PaymentMethodTotalResponse(BaseModel):
    payment_method_id: int
    payment_method_name: str
    count: int
    amount: Decimal


class ShiftSummaryResponse(BaseModel):
    shift: ShiftListItem
    lines: List[ReconciliationLineResponse]
    payment_totals: List[PaymentMethodTotalResponse]
    total_fuel_dispensed: Decimal
    total_fuel_sales: Decimal
    total_collected: Decimal
    discrepancy: Decimal
    cached_total_matches: Optional[bool]


class SuggestedNameResponse(BaseModel):
    shift_name: str
    shift_type: ShiftType


def _payment_response(payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        payment_method_id=payment.payment_method_id,
        payment_method_name=payment.payment_method.name if payment.payment_method else None,
        amount=payment.amount,
        quantity=payment.quantity,
        coins_amount=payment.coins_amount,
        denominations=[
            PaymentDenominationResponse(
                denomination_id=d.denomination_id,
                label=d.denomination.label,
                value=d.denomination.value,
                count=d.count,
            )
            for d in payment.denominations
        ],
        created_at=payment.created_at,
    )


def _denomination_counts(
    items: Optional[List[DenominationCountRequest]],
) -> Optional[list[tuple[int, int]]]:
    if items is None:
        return None
    return [(item.denomination_id, item.count) for item in items]


def _shift_response(session: DutySession) -> ShiftResponse:
    return ShiftResponse(
        id=session.id,
        station_id=session.station_id,
        user_id=session.user_id,
        shift_name=session.shift_name,
        shift_type=session.shift_type,
        status=session.status,
        start_time=session.start_time,
        end_time=session.end_time,
        total_payment_collected=session.total_payment_collected,
        version=session.version,
        notes=session.notes,
        verified_at=session.verified_at,
        verified_by_user_id=session.verified_by_user_id,
        rejection_notes=session.rejection_notes,
        readings=[
            ReadingResponse(
                id=r.id,
                nozzle_id=r.nozzle_id,
                nozzle_code=r.nozzle.code,
                fuel_name=r.nozzle.fuel.name if r.nozzle.fuel else None,
                unit_price=r.nozzle.price,
                opening_reading=r.opening_reading,
                test_qty=r.test_qty,
                closing_reading=r.closing_reading,
                fuel_dispensed=r.fuel_dispensed,
            )
            for r in session.nozzle_readings
        ],
        payments=[_payment_response(p) for p in session.session_payments],
    )


def _payments_response(session: DutySession) -> PaymentsResponse:
    return PaymentsResponse(
        shift_id=session.id,
        version=session.version,
        total_payment_collected=session.total_payment_collected,
        payments=[_payment_response(p) for p in session.session_payments],
    )


def _summary_response(session: DutySession, result: ReconciliationResult) -> ShiftSummaryResponse:
    return ShiftSummaryResponse(
        shift=ShiftListItem.model_validate(session),
        lines=[ReconciliationLineResponse(**asdict(line)) for line in result.lines],
        payment_totals=[PaymentMethodTotalResponse(**asdict(t)) for t in result.payment_totals],
        total_fuel_dispensed=result.total_fuel_dispensed,
        total_fuel_sales=result.total_fuel_sales,
        total_collected=result.total_collected,
        discrepancy=result.discrepancy,
        cached_total_matches=result.cached_total_matches,
    )


# ==================== Endpoints ====================


@router.get(
    "/active",
    response_model=ShiftResponse,
    summary="המשמרת הפתוחה של המשתמש",
    responses={404: {"description": "אין משמרת פתוחה"}},
)
async def get_active_shift(
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    session = await service.get_active_shift(actor)
    if not session:
        raise NotFoundException(
            "Active shift", f"user {actor.user_id}", error_code=ErrorCode.SHIFT_NOT_FOUND
        )
    return _shift_response(session)


@router.get(
    "/suggested-name",
    response_model=SuggestedNameResponse,
    summary="שם ברירת מחדל לפי שעת היום",
)
async def get_suggested_name(
    actor: ShiftActor = Depends(get_current_actor),
) -> SuggestedNameResponse:
    name, shift_type = default_shift_name()
    return SuggestedNameResponse(shift_name=name, shift_type=shift_type)


@router.get(
    "/denominations",
    response_model=List[DenominationResponse],
    summary="קטלוג השטרות לספירת מזומן",
)
async def list_denominations(
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> List[DenominationResponse]:
    return [DenominationResponse.model_validate(d) for d in await service.list_denominations()]


@router.post(
    "",
    response_model=ShiftResponse,
    status_code=status.HTTP_201_CREATED,
    summary="פתיחת משמרת",
    responses={
        201: {"description": "המשמרת נפתחה והפיות נתפסו"},
        404: {"description": "פייה לא קיימת"},
        409: {"description": "כבר יש משמרת פתוחה או שפייה תפוסה"},
    },
)
async def start_shift(
    body: StartShiftRequest,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    session = await service.start_shift(
        actor,
        shift_name=body.shift_name,
        nozzle_ids=body.nozzle_ids,
        shift_type=body.shift_type,
    )
    return _shift_response(session)


@router.get(
    "",
    response_model=ShiftListResponse,
    summary="היסטוריית משמרות",
    description="ברירת מחדל: כל המשמרות שאינן פתוחות. עובד רואה רק את המשמרות שלו.",
)
async def list_shifts(
    status_filter: Optional[ShiftStatus] = Query(None, alias="status"),
    user_id: Optional[int] = None,
    shift_type: Optional[ShiftType] = None,
    start_from: Optional[datetime] = None,
    start_to: Optional[datetime] = None,
    end_from: Optional[datetime] = None,
    end_to: Optional[datetime] = None,
    limit: int = Query(20, ge=1, le=settings.SHIFT_HISTORY_MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftListResponse:
    items, total = await service.list_shifts(
        actor,
        status=status_filter,
        user_id=user_id,
        shift_type=shift_type,
        start_from=start_from,
        start_to=start_to,
        end_from=end_from,
        end_to=end_to,
        limit=limit,
        offset=offset,
    )
    return ShiftListResponse(
        items=[ShiftListItem.model_validate(s) for s in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{shift_id}", response_model=ShiftResponse, summary="פרטי משמרת")
async def get_shift(
    shift_id: int,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    return _shift_response(await service.get_shift(actor, shift_id))


@router.get(
    "/{shift_id}/summary",
    response_model=ShiftSummaryResponse,
    summary="סיכום והתאמה: מכירות דלק מול גבייה",
)
async def get_shift_summary(
    shift_id: int,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftSummaryResponse:
    session, result = await service.get_summary(actor, shift_id)
    return _summary_response(session, result)


@router.patch(
    "/{shift_id}/readings/{reading_id}",
    response_model=ShiftResponse,
    summary="עדכון קריאת בדיקה / סגירה",
)
async def update_reading(
    shift_id: int,
    reading_id: int,
    body: ReadingUpdateRequest,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    session = await service.update_reading(
        actor,
        shift_id,
        reading_id,
        test_qty=body.test_qty,
        closing_reading=body.closing_reading,
        expected_version=body.expected_version,
    )
    return _shift_response(session)


@router.post(
    "/{shift_id}/payments",
    response_model=PaymentsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="רישום תשלום",
)
async def add_payment(
    shift_id: int,
    body: PaymentCreateRequest,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> PaymentsResponse:
    session = await service.add_payment(
        actor,
        shift_id,
        payment_method_id=body.payment_method_id,
        amount=body.amount,
        quantity=body.quantity,
        denominations=_denomination_counts(body.denominations),
        coins_amount=body.coins_amount,
        expected_version=body.expected_version,
    )
    return _payments_response(session)


@router.put(
    "/{shift_id}/payments/{payment_id}",
    response_model=PaymentsResponse,
    summary="עדכון תשלום",
)
async def update_payment(
    shift_id: int,
    payment_id: int,
    body: PaymentUpdateRequest,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> PaymentsResponse:
    sent = body.model_fields_set
    optional = {
        name: getattr(body, name)
        for name in ("quantity", "coins_amount")
        if name in sent
    }
    if "denominations" in sent:
        optional["denominations"] = _denomination_counts(body.denominations) or []
    session = await service.update_payment(
        actor,
        shift_id,
        payment_id,
        payment_method_id=body.payment_method_id,
        amount=body.amount,
        expected_version=body.expected_version,
        **optional,
    )
    return _payments_response(session)


@router.delete(
    "/{shift_id}/payments/{payment_id}",
    response_model=PaymentsResponse,
    summary="מחיקת תשלום",
)
async def delete_payment(
    shift_id: int,
    payment_id: int,
    expected_version: Optional[int] = None,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> PaymentsResponse:
    session = await service.delete_payment(
        actor, shift_id, payment_id, expected_version=expected_version
    )
    return _payments_response(session)


@router.post(
    "/{shift_id}/complete",
    response_model=ShiftResponse,
    summary="סגירת משמרת ושחרור הפיות",
    responses={
        400: {"description": "אין אף קריאת סגירה"},
        409: {"description": "המשמרת כבר סגורה או שונתה במקביל"},
    },
)
async def complete_shift(
    shift_id: int,
    body: Optional[CompleteShiftRequest] = None,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    body = body or CompleteShiftRequest()
    session = await service.complete_shift(
        actor, shift_id, notes=body.notes, expected_version=body.expected_version
    )
    return _shift_response(session)


@router.post(
    "/{shift_id}/verify",
    response_model=ShiftResponse,
    summary="אישור או דחיית משמרת — מנהל בלבד",
)
async def verify_shift(
    shift_id: int,
    body: VerifyShiftRequest,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    session = await service.verify_shift(actor, shift_id, approved=body.approved, notes=body.notes)
    return _shift_response(session)


@router.post(
    "/{shift_id}/resubmit",
    response_model=ShiftResponse,
    summary="הגשה מחדש של משמרת שנדחתה",
)
async def resubmit_shift(
    shift_id: int,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    return _shift_response(await service.resubmit_shift(actor, shift_id))


@router.post(
    "/{shift_id}/archive",
    response_model=ShiftResponse,
    summary="ארכוב משמרת — מנהל בלבד",
)
async def archive_shift(
    shift_id: int,
    actor: ShiftActor = Depends(get_current_actor),
    service: ShiftService = Depends(get_shift_service),
) -> ShiftResponse:
    return _shift_response(await service.archive_shift(actor, shift_id))

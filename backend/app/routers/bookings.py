"""Lesson booking router."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.errors import NotFoundError, ValidationError
from app.models.booking import BOOKING_STATUSES, Booking
from app.routers.payments import get_active_instructor
from app.schemas.bookings import BookingCreateRequest, BookingListResponse, BookingResponse, BookingStatusUpdate
from app.services.commission import payment_from_hours, validate_amount
from app.services.transitions import BOOKING_TRANSITIONS, apply_transition

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Book a lesson; the price defaults to its length at the instructor's rate."""
    instructor = await get_active_instructor(db, body.instructor_id)

    if body.price_pence is not None:
        price = validate_amount(body.price_pence, "price_pence")
    else:
        hours = (body.end_at - body.start_at).total_seconds() / 3600
        price = payment_from_hours(hours, instructor.hourly_rate_pence)

    booking = Booking(
        learner_id=body.learner_id,
        instructor_id=body.instructor_id,
        start_at=body.start_at,
        end_at=body.end_at,
        price_pence=price,
        status="pending",
    )
    db.add(booking)
    await db.commit()
    logger.info(f"Booking {booking.uuid} created for learner {body.learner_id} with instructor {body.instructor_id}")
    return BookingResponse.model_validate(booking)


@router.get("/api/bookings", response_model=BookingListResponse)
async def list_bookings(
    learner_id: Optional[str] = None,
    instructor_id: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
    db: AsyncSession = Depends(get_db),
):
    """Bookings filtered by learner, instructor and status, most recent lesson first."""
    if page < 1 or page_size < 1:
        raise ValidationError("page and page_size must be positive")

    filters = []
    if learner_id:
        filters.append(Booking.learner_id == learner_id)
    if instructor_id:
        filters.append(Booking.instructor_id == instructor_id)
    if status:
        filters.append(Booking.status == status)

    count_result = await db.execute(select(func.count(Booking.uuid)).where(*filters))
    total = count_result.scalar() or 0

    result = await db.execute(
        select(Booking)
        .where(*filters)
        .order_by(desc(Booking.start_at))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    bookings = result.scalars().all()

    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.patch("/api/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: str,
    body: BookingStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Move a booking along ``pending -> confirmed -> completed`` or cancel it."""
    if body.status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status: {body.status}")

    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")

    if apply_transition(booking, body.status, BOOKING_TRANSITIONS, "booking"):
        await db.commit()
        logger.info(f"Booking {booking.uuid} is now {booking.status}")
    return BookingResponse.model_validate(booking)

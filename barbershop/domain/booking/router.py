"""Booking router - Public FastAPI endpoints for tenants, availability and appointments"""

import logging
from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import SessionLocal, get_db
from ...exceptions import SlotUnavailableError
from ...models import Agendamento, Usuario
from ...rate_limiter import create_rate_limiter
from .schemas import (
    AppointmentCreate,
    AppointmentResponse,
    BarberResponse,
    CancelRequest,
    ServiceResponse,
    SlotsResponse,
    TenantResponse,
)
from .service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/booking", tags=["Booking"])

rate_limit_booking = create_rate_limiter(limit=20, window_seconds=60, key_prefix="booking")


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


async def send_booking_notifications(appointment_id: str, cancelled: bool = False) -> None:
    """Runs after the response with its own session"""
    db = SessionLocal()
    try:
        appointment = db.query(Agendamento).filter(Agendamento.id == appointment_id).first()
        if not appointment:
            return
        service = BookingService(db)
        if cancelled:
            service.notify_appointment_cancelled(appointment)
        else:
            await service.notify_appointment_created(appointment)
    except Exception as e:
        logger.error(f"❌ Booking notifications failed for {appointment_id}: {e}")
    finally:
        db.close()


@router.get("/tenants", response_model=list[TenantResponse])
async def list_tenants(service: BookingService = Depends(get_booking_service)):
    return service.list_tenants()


@router.get("/tenants/{slug}", response_model=TenantResponse)
async def get_tenant(slug: str, service: BookingService = Depends(get_booking_service)):
    return service.get_tenant_by_slug(slug)


@router.get("/tenants/{tenant_id}/services", response_model=list[ServiceResponse])
async def list_services(tenant_id: str, service: BookingService = Depends(get_booking_service)):
    return service.list_services(tenant_id)


@router.get("/tenants/{tenant_id}/barbers", response_model=list[BarberResponse])
async def list_barbers(tenant_id: str, service: BookingService = Depends(get_booking_service)):
    return service.list_barbers(tenant_id)


@router.get("/barbers/{barber_id}/slots", response_model=SlotsResponse)
async def get_available_slots(
    barber_id: str,
    day: date = Query(..., alias="date"),
    duration: int = Query(60, ge=5, le=480),
    service: BookingService = Depends(get_booking_service),
    _: None = Depends(rate_limit_booking),
):
    """Free start times for a barber on a day"""
    slots = service.get_available_slots(barber_id, day, duration)
    return SlotsResponse(barbeiroId=barber_id, data=day.isoformat(), duracaoMinutos=duration, horarios=slots)


@router.post("/appointments", response_model=AppointmentResponse, status_code=201)
async def create_appointment(
    data: AppointmentCreate,
    background_tasks: BackgroundTasks,
    current_user: Usuario = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    _: None = Depends(rate_limit_booking),
):
    try:
        appointment = service.create_appointment(data, current_user)
    except SlotUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    background_tasks.add_task(send_booking_notifications, appointment.id)
    return AppointmentResponse.from_model(appointment)


@router.get("/appointments", response_model=list[AppointmentResponse])
async def get_my_appointments(
    current_user: Usuario = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Client booking history, newest first"""
    return [AppointmentResponse.from_model(a) for a in service.get_client_appointments(current_user.id)]


@router.get("/appointments/upcoming", response_model=list[AppointmentResponse])
async def get_upcoming_appointments(
    limit: int = Query(5, ge=1, le=50),
    current_user: Usuario = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return [
        AppointmentResponse.from_model(a) for a in service.get_upcoming_appointments(current_user.id, limit)
    ]


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    background_tasks: BackgroundTasks,
    data: CancelRequest = CancelRequest(),
    current_user: Usuario = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    appointment = service.cancel_appointment(appointment_id, current_user, data.motivo)
    background_tasks.add_task(send_booking_notifications, appointment.id, True)
    return AppointmentResponse.from_model(appointment)

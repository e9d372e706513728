import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.base import as_utc
from telecare.core.db import get_session
from telecare.core.paging import PageParams
from telecare.core.security import get_principal, require_roles, Principal, Role
from telecare.modules.appointments.schemas import (
    AppointmentCreate, AppointmentUpdate, AppointmentOut, BookingOut, CancelOut, ConflictOut,
)
from telecare.modules.appointments.service import AppointmentService

router = APIRouter()

# roles allowed to create, change or cancel appointments
writers = require_roles(Role.PROVIDER, Role.ORG_ADMIN, Role.DEPARTMENT_ADMIN)

def svc(session: AsyncSession = Depends(get_session)) -> AppointmentService:
    return AppointmentService(session)

def _utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None

@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    payload: AppointmentCreate,
    principal: Principal = Depends(writers),
    service: AppointmentService = Depends(svc),
):
    return await service.book(principal, payload)

@router.get("", response_model=list[AppointmentOut])
async def list_appointments(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1),
    start: datetime | None = None,
    end: datetime | None = None,
    client_mrn: str | None = None,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(svc),
):
    return await service.search(principal, PageParams(skip=skip, limit=limit), start=_utc(start), end=_utc(end), client_mrn=client_mrn)

@router.get("/conflicts", response_model=ConflictOut)
async def check_conflicts(
    start: datetime,
    end: datetime,
    provider_identity: str | None = None,
    department_id: str | None = None,
    exclude_id: uuid.UUID | None = None,
    principal: Principal = Depends(writers),
    service: AppointmentService = Depends(svc),
):
    return await service.check_conflict(_utc(start), _utc(end), provider_identity=provider_identity, department_id=department_id, exclude_id=exclude_id)

@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_appointment(
    appointment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(svc),
):
    return await service.get(principal, appointment_id)

@router.patch("/{appointment_id}", response_model=BookingOut)
async def update_appointment(
    appointment_id: uuid.UUID,
    payload: AppointmentUpdate,
    principal: Principal = Depends(writers),
    service: AppointmentService = Depends(svc),
):
    return await service.update(principal, appointment_id, payload)

@router.delete("/{appointment_id}", response_model=CancelOut)
async def cancel_appointment(
    appointment_id: uuid.UUID,
    principal: Principal = Depends(writers),
    service: AppointmentService = Depends(svc),
):
    return await service.cancel(principal, appointment_id)

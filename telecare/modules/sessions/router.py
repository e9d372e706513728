import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from telecare.core.db import get_session
from telecare.core.security import get_principal, Principal
from telecare.modules.sessions.schemas import AdmissionResult, JoinRequest
from telecare.modules.sessions.service import AdmissionService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AdmissionService:
    return AdmissionService(session)

@router.post("/join", response_model=AdmissionResult)
async def join_with_token(payload: JoinRequest, service: AdmissionService = Depends(svc)):
    """Token-only entry: the join token is the credential, no bearer required."""
    return await service.redeem(payload.token, appointment_id=payload.appointment_id)

@router.post("/{appointment_id}/admission", response_model=AdmissionResult)
async def request_admission(
    appointment_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AdmissionService = Depends(svc),
):
    return await service.request_admission(appointment_id, principal.identity)

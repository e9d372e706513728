from fastapi import APIRouter
from telecare.modules.appointments.router import router as appointments_router
from telecare.modules.sessions.router import router as sessions_router

api_router = APIRouter()
api_router.include_router(appointments_router, prefix="/appointments", tags=["appointments"])
api_router.include_router(sessions_router, prefix="/sessions", tags=["sessions"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}

from fastapi import APIRouter

from fieldsurvey.api.v1.endpoints import forms, responses, sessions, sync, wards

api_v1_router = APIRouter()

api_v1_router.include_router(forms.router, prefix="/forms", tags=["forms"])
api_v1_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_v1_router.include_router(responses.router, prefix="/responses", tags=["responses"])
api_v1_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_v1_router.include_router(wards.router, prefix="/wards", tags=["wards"])

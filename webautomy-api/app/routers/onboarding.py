from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.schemas.onboarding import OnboardRequest, OnboardResponse
from app.services.auth_service import OrgContext, require_role
from app.services.onboarding_service import OnboardingService

router = APIRouter(prefix="/api")

ONBOARDING_ROLES = ("owner", "admin")


def get_onboarding_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> OnboardingService:
    return OnboardingService(db, settings)


@router.post("/onboard", response_model=OnboardResponse)
async def onboard_whatsapp(
    request: OnboardRequest,
    org: OrgContext = Depends(require_role(*ONBOARDING_ROLES)),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """Finish WhatsApp embedded signup and connect the number to the caller's org."""
    channel = await service.connect_whatsapp(org.org_id, request.code, request.phone_number_id, request.waba_id)
    return OnboardResponse(
        success=True,
        channel_id=channel.id,
        phone_number_id=channel.phone_number_id,
        status=channel.status,
    )

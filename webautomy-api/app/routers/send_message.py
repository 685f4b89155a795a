from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.schemas.send_message import SendMessageRequest, SendMessageResponse
from app.services.auth_service import OrgContext, load_org_context
from app.services.dispatch_service import DispatchService
from app.services.whatsapp_service import WhatsAppService

router = APIRouter(prefix="/api")


def get_whatsapp_service(settings: Settings = Depends(get_settings)) -> WhatsAppService:
    return WhatsAppService.from_settings(settings)


def get_dispatch_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    whatsapp: WhatsAppService = Depends(get_whatsapp_service),
) -> DispatchService:
    return DispatchService.from_settings(db, settings, whatsapp)


@router.post("/send-message", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    org: OrgContext = Depends(load_org_context),
    dispatcher: DispatchService = Depends(get_dispatch_service),
):
    """Metered outbound send on behalf of the caller's org.

    Rejections and failures are RelayErrors; the app-level handler maps them
    to their status codes.
    """
    receipt = await dispatcher.dispatch_outbound(
        org.org_id,
        request.channel_id,
        request.to,
        body=request.body,
        media_url=request.media_url,
        media_type=request.media_type,
    )
    return SendMessageResponse(
        success=True,
        message_id=receipt.whatsapp_message_id,
        record_id=receipt.message_id,
        correlation_id=receipt.correlation_id,
    )

"""Server capabilities advertised to the client."""

from fastapi import APIRouter
from pydantic import BaseModel

from cabbagesync.oauth2.common import ProviderType
from cabbagesync.oauth2.service import get_oauth2_service

router = APIRouter(tags=["server"])


class ServerInfoResponse(BaseModel):
    googleOAuth2IsSupported: bool
    microsoftOAuth2IsSupported: bool


@router.get("/server-info", response_model=ServerInfoResponse)
async def get_server_info():
    service = get_oauth2_service()
    return ServerInfoResponse(
        googleOAuth2IsSupported=service.provider_is_supported(ProviderType.GOOGLE),
        microsoftOAuth2IsSupported=service.provider_is_supported(ProviderType.MICROSOFT),
    )

from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException

from afip_sdk.client import AfipClient
from afip_sdk.config import TICKET_SERVICES
from afip_sdk.domain.errors import AuthenticationError
from afip_sdk.presentation.api.dependencies import get_client

router = APIRouter(prefix="/v1/auth", tags=["auth"])

@router.post("/tickets/{service}")
def ensure_ticket(service: str, client: AfipClient = Depends(get_client)) -> dict[str, str]:  # type: ignore[misc]
    if service not in TICKET_SERVICES:
        raise HTTPException(status_code=404, detail=f"Unknown AFIP service: {service}")
    try:
        ticket = client.get_valid_ticket(service)
    except AuthenticationError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e

    # token/sign never leave the process through the API
    return {
        "service": ticket.service_name,
        "generated_at": ticket.generated_at.isoformat(),
        "expires_at": ticket.expires_at.isoformat(),
    }

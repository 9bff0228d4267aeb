from fastapi import APIRouter, Depends, Response

from afip_sdk.client import AfipClient
from afip_sdk.domain.model import HealthStatus
from afip_sdk.presentation.api.dependencies import get_client

router = APIRouter(tags=["health"])

@router.get("/health")
def health(response: Response, client: AfipClient = Depends(get_client)) -> dict[str, object]:  # type: ignore[misc]
    report = client.check_health()
    if report.overall is HealthStatus.UNHEALTHY:
        response.status_code = 503
    return report.to_dict()

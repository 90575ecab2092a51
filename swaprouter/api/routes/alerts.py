"""Registered alert listing and cancellation"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
import structlog

from swaprouter.api.app import ApiServices, get_services, verify_api_key
from swaprouter.monitoring.alerts import AlertKind

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["alerts"])


class AlertResponse(BaseModel):
    """Armed alert; price fields or system fields are set depending on kind"""

    id: str
    kind: str
    created_at: float
    token: Optional[str] = None
    condition: Optional[str] = None
    target: Optional[str] = None
    reference_price: Optional[str] = Field(None, description="Base price for PERCENT_CHANGE alerts")
    metric: Optional[str] = None
    operator: Optional[str] = None
    threshold: Optional[float] = None


@router.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    kind: Optional[AlertKind] = Query(None, description="Only price or only system alerts"),
    services: ApiServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
) -> List[AlertResponse]:
    """
    Alerts that have not fired or been cancelled yet, oldest first.

    Requires authentication via X-API-Key header.
    """
    armed = sorted(services.alerts.alerts(kind), key=lambda a: a.created_at)
    return [AlertResponse(created_at=a.created_at, **a.describe()) for a in armed]


@router.delete("/alerts/{alert_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_alert(
    alert_id: str,
    services: ApiServices = Depends(get_services),
    api_key: str = Depends(verify_api_key),
) -> Response:
    """
    Cancel an armed alert.

    Requires authentication via X-API-Key header.
    """
    if not services.alerts.remove_alert(alert_id):
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")

    logger.info("alert_cancelled_via_api", alert_id=alert_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

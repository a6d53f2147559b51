"""
FastAPI route: Grafana webhook ingress.

Provides:
    <any method> /   — accept a Grafana alert notification

Responses:
    200  empty body, alert queued for delivery
    400  plain-text decode error, nothing queued

Delivery runs on the background worker, so delivery failures are never
reported to the caller.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from forwarder.app.alerts.ingress import IngressHandler

router = APIRouter(tags=["webhook"])

WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def get_ingress(request: Request) -> IngressHandler:
    return request.app.state.ingress


@router.api_route("/", methods=WEBHOOK_METHODS, response_class=Response)
async def receive_alert(
    request: Request,
    ingress: IngressHandler = Depends(get_ingress),
) -> Response:
    """Queue a Grafana alert for delivery and return immediately."""
    await ingress.handle(await request.body())
    return Response(status_code=200)

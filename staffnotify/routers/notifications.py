from fastapi import APIRouter, Depends, Request, status

from staffnotify.deps import get_subscription_registry
from staffnotify.schemas import (
    PushConfigResponse,
    PushSubscribeRequest,
    PushSubscribeResponse,
    PushUnsubscribeRequest,
    PushUnsubscribeResponse,
)
from staffnotify.services.push_transport import get_push_public_config
from staffnotify.services.subscriptions import SubscriptionRegistry

router = APIRouter(tags=["notifications"])


@router.get("/api/notifications/config", response_model=PushConfigResponse)
def push_config() -> PushConfigResponse:
    return PushConfigResponse(**get_push_public_config())


@router.post(
    "/api/notifications/subscribe",
    response_model=PushSubscribeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def push_subscribe(
    payload: PushSubscribeRequest,
    request: Request,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
) -> PushSubscribeResponse:
    request.state.actor = "employee"
    request.state.employee_id = payload.empid
    created = await registry.register(payload.empid, payload.subscription)
    return PushSubscribeResponse(success=True, message="Subscribed successfully", created=created)


@router.post("/api/notifications/unsubscribe", response_model=PushUnsubscribeResponse)
async def push_unsubscribe(
    payload: PushUnsubscribeRequest,
    request: Request,
    registry: SubscriptionRegistry = Depends(get_subscription_registry),
) -> PushUnsubscribeResponse:
    request.state.actor = "employee"
    request.state.employee_id = payload.empid
    removed = await registry.remove_by_endpoint(payload.empid, payload.endpoint)
    return PushUnsubscribeResponse(ok=True, removed=removed)

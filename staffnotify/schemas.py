from typing import Any

from pydantic import BaseModel, Field


class PushConfigResponse(BaseModel):
    enabled: bool
    vapid_public_key: str | None = None


class PushSubscribeRequest(BaseModel):
    empid: str = Field(min_length=1, max_length=64)
    subscription: dict[str, Any]


class PushSubscribeResponse(BaseModel):
    success: bool
    message: str
    created: bool


class PushUnsubscribeRequest(BaseModel):
    empid: str = Field(min_length=1, max_length=64)
    endpoint: str = Field(min_length=1)


class PushUnsubscribeResponse(BaseModel):
    ok: bool
    removed: bool

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any

from pywebpush import WebPushException, webpush

from staffnotify.settings import Settings, get_settings, is_push_enabled

logger = logging.getLogger("staffnotify.push_transport")

EXPIRED_STATUS_CODES = frozenset({404, 410})


class DeliveryStatus(str, enum.Enum):
    SENT = "SENT"
    EXPIRED = "EXPIRED"
    TRANSIENT = "TRANSIENT"
    REJECTED = "REJECTED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    status: DeliveryStatus
    endpoint: str
    status_code: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.SENT


def classify_failure(status_code: int | None) -> DeliveryStatus:
    if status_code in EXPIRED_STATUS_CODES:
        return DeliveryStatus.EXPIRED
    if status_code is None or status_code == 429 or status_code >= 500:
        return DeliveryStatus.TRANSIENT
    return DeliveryStatus.REJECTED


def get_push_public_config(settings: Settings | None = None) -> dict[str, Any]:
    resolved = settings or get_settings()
    enabled = is_push_enabled(resolved)
    return {
        "enabled": enabled,
        "vapid_public_key": resolved.push_vapid_public_key if enabled else None,
    }


class WebPushTransport:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return is_push_enabled(self._settings)

    def deliver(self, subscription: dict[str, Any], body: str) -> DeliveryResult:
        endpoint = str(subscription.get("endpoint") or "")
        if not self.enabled:
            return DeliveryResult(DeliveryStatus.SKIPPED, endpoint, error="push_disabled")

        try:
            webpush(
                subscription_info=subscription,
                data=body,
                vapid_private_key=self._settings.push_vapid_private_key,
                vapid_claims={"sub": self._settings.push_vapid_subject},
                ttl=self._settings.push_ttl_seconds,
            )
        except WebPushException as exc:
            status_code: int | None = None
            if exc.response is not None:
                status_code = exc.response.status_code
            return DeliveryResult(classify_failure(status_code), endpoint, status_code, str(exc))
        except Exception as exc:
            return DeliveryResult(DeliveryStatus.TRANSIENT, endpoint, None, str(exc))
        return DeliveryResult(DeliveryStatus.SENT, endpoint)

    async def send(self, subscription: dict[str, Any], body: str) -> DeliveryResult:
        endpoint = str(subscription.get("endpoint") or "")
        try:
            result = await asyncio.to_thread(self.deliver, subscription, body)
        except Exception as exc:  # pragma: no cover - deliver already converts failures
            result = DeliveryResult(DeliveryStatus.TRANSIENT, endpoint, None, str(exc))

        if result.status is DeliveryStatus.EXPIRED:
            logger.info(
                "push_subscription_expired",
                extra={"endpoint": endpoint, "status_code": result.status_code},
            )
        elif result.status in {DeliveryStatus.TRANSIENT, DeliveryStatus.REJECTED}:
            logger.warning(
                "push_delivery_failed",
                extra={
                    "endpoint": endpoint,
                    "delivery_status": result.status.value,
                    "status_code": result.status_code,
                    "error": result.error,
                },
            )
        return result

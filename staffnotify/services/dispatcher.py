from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from dataclasses import asdict, dataclass, replace
from typing import Any, Protocol

from staffnotify.services.employee_store import EmployeeStore
from staffnotify.services.push_transport import DeliveryResult, DeliveryStatus
from staffnotify.services.subscriptions import (
    SubscriptionRegistry,
    normalize_subscription_list,
    subscription_endpoint,
)
from staffnotify.settings import Settings, get_settings

logger = logging.getLogger("staffnotify.dispatcher")


class PushTransport(Protocol):
    async def send(self, subscription: dict[str, Any], body: str) -> DeliveryResult: ...


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    title: str
    message: str
    url: str = "/"
    icon: str | None = None
    image: str | None = None

    def with_defaults(self, *, icon: str, image: str) -> NotificationPayload:
        return replace(self, icon=self.icon or icon, image=self.image or image)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)


@dataclass(slots=True)
class DispatchSummary:
    recipients: int = 0
    targets: int = 0
    sent: int = 0
    expired: int = 0
    failed: int = 0
    pruned: int = 0

    def record(self, result: DeliveryResult) -> None:
        if result.status is DeliveryStatus.SENT:
            self.sent += 1
        elif result.status is DeliveryStatus.EXPIRED:
            self.expired += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class NotificationDispatcher:
    """Builds push payloads and fans them out to employee subscriptions.

    ``send_to_user`` and ``broadcast_to_role`` never raise: every failure is
    logged and folded into the returned ``DispatchSummary``. Callers that must
    not wait on delivery use the ``*_background`` variants.
    """

    def __init__(
        self,
        *,
        store: EmployeeStore,
        registry: SubscriptionRegistry,
        transport: PushTransport,
        settings: Settings | None = None,
    ) -> None:
        resolved = settings or get_settings()
        self._store = store
        self._registry = registry
        self._transport = transport
        self._default_icon = resolved.push_default_icon
        self._default_image = resolved.push_default_image
        self._background: set[asyncio.Task[Any]] = set()

    def prepare(self, payload: NotificationPayload) -> NotificationPayload:
        return payload.with_defaults(icon=self._default_icon, image=self._default_image)

    async def send_to_user(self, employee_id: str, payload: NotificationPayload) -> DispatchSummary:
        prepared = self.prepare(payload)
        summary = DispatchSummary()
        try:
            subscriptions = await self._registry.list(employee_id)
        except Exception:
            logger.exception("push_subscription_lookup_failed", extra={"employee_id": employee_id})
            return summary
        if not subscriptions:
            return summary

        summary.recipients = 1
        await self._fan_out(employee_id, subscriptions, prepared.to_json(), summary)
        logger.info(
            "push_sent_to_employee",
            extra={"employee_id": employee_id, "title": prepared.title, **summary.to_dict()},
        )
        return summary

    async def broadcast_to_role(self, excluded_role: str, payload: NotificationPayload) -> DispatchSummary:
        prepared = self.prepare(payload)
        summary = DispatchSummary()
        try:
            employees = await asyncio.to_thread(self._store.list_employees, exclude_role_type=excluded_role)
        except Exception:
            logger.exception("push_broadcast_failed", extra={"excluded_role": excluded_role})
            return summary

        body = prepared.to_json()
        branches = []
        for employee in employees:
            if employee.role_type == excluded_role:
                continue
            subscriptions = normalize_subscription_list(
                employee.push_subscriptions,
                employee_id=employee.employee_id,
            )
            if subscriptions:
                branches.append(self._fan_out(employee.employee_id, subscriptions, body, summary))

        summary.recipients = len(branches)
        await asyncio.gather(*branches)
        logger.info(
            "push_broadcast_complete",
            extra={
                "excluded_role": excluded_role,
                "title": prepared.title,
                "employees": len(employees),
                **summary.to_dict(),
            },
        )
        return summary

    def send_to_user_background(self, employee_id: str, payload: NotificationPayload) -> asyncio.Task[DispatchSummary]:
        return self.spawn(self.send_to_user(employee_id, payload))

    def broadcast_to_role_background(
        self,
        excluded_role: str,
        payload: NotificationPayload,
    ) -> asyncio.Task[DispatchSummary]:
        return self.spawn(self.broadcast_to_role(excluded_role, payload))

    def spawn(self, coro: Coroutine[Any, Any, DispatchSummary]) -> asyncio.Task[DispatchSummary]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _fan_out(
        self,
        employee_id: str,
        subscriptions: list[dict[str, Any]],
        body: str,
        summary: DispatchSummary,
    ) -> None:
        summary.targets += len(subscriptions)
        results = await asyncio.gather(
            *(self._deliver(employee_id, subscription, body, summary) for subscription in subscriptions),
            return_exceptions=True,
        )
        for item in results:
            if isinstance(item, BaseException):
                summary.failed += 1
                logger.error(
                    "push_delivery_crashed",
                    extra={"employee_id": employee_id, "error": repr(item)},
                )

    async def _deliver(
        self,
        employee_id: str,
        subscription: dict[str, Any],
        body: str,
        summary: DispatchSummary,
    ) -> None:
        result = await self._transport.send(subscription, body)
        summary.record(result)
        if result.status is not DeliveryStatus.EXPIRED:
            return

        endpoint = subscription_endpoint(subscription)
        try:
            removed = await self._registry.remove_by_endpoint(employee_id, endpoint)
        except Exception:
            logger.exception(
                "push_subscription_prune_failed",
                extra={"employee_id": employee_id, "endpoint": endpoint},
            )
            return
        if removed:
            summary.pruned += 1

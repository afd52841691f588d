from __future__ import annotations

import asyncio
import json
import logging
import weakref
from typing import Any

from staffnotify.errors import ApiError, EmployeeNotFoundError
from staffnotify.services.employee_store import EmployeeStore

logger = logging.getLogger("staffnotify.subscriptions")


def subscription_endpoint(subscription: Any) -> str:
    if not isinstance(subscription, dict):
        return ""
    return str(subscription.get("endpoint") or "").strip()


def normalize_subscription_list(value: Any, *, employee_id: str | None = None) -> list[dict[str, Any]]:
    """Coerce a stored ``push_subscriptions`` value into an ordered list unique by endpoint.

    Accepts ``None``, JSON text, a single subscription object, a mapping of
    subscriptions or a list. Anything unreadable yields an empty list.
    """
    if value is None:
        return []

    raw = value
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        try:
            raw = json.loads(text)
        except ValueError:
            logger.warning(
                "push_subscriptions_malformed",
                extra={"employee_id": employee_id, "reason": "invalid_json"},
            )
            return []

    if isinstance(raw, dict):
        raw = [raw] if "endpoint" in raw else list(raw.values())
    if not isinstance(raw, list):
        logger.warning(
            "push_subscriptions_malformed",
            extra={"employee_id": employee_id, "reason": f"unexpected_type:{type(raw).__name__}"},
        )
        return []

    normalized: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in raw:
        endpoint = subscription_endpoint(item)
        if not endpoint or endpoint in seen:
            continue
        seen.add(endpoint)
        normalized.append(item)
    return normalized


class SubscriptionRegistry:
    """Push subscriptions kept on the employee record.

    Writes are read-modify-write, serialized per employee within this process.
    """

    def __init__(self, store: EmployeeStore) -> None:
        self._store = store
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, employee_id: str) -> asyncio.Lock:
        lock = self._locks.get(employee_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[employee_id] = lock
        return lock

    async def register(self, employee_id: str, subscription: dict[str, Any]) -> bool:
        endpoint = subscription_endpoint(subscription)
        if not endpoint:
            raise ApiError(
                status_code=422,
                code="INVALID_PUSH_SUBSCRIPTION",
                message="Subscription endpoint is required.",
            )

        async with self._lock_for(employee_id):
            record = await asyncio.to_thread(self._store.get_employee, employee_id)
            if record is None:
                raise EmployeeNotFoundError(employee_id)

            current = normalize_subscription_list(record.push_subscriptions, employee_id=employee_id)
            if any(subscription_endpoint(item) == endpoint for item in current):
                return False

            current.append(subscription)
            updated = await asyncio.to_thread(
                self._store.update_employee_fields,
                employee_id,
                push_subscriptions=current,
            )
            if not updated:
                raise EmployeeNotFoundError(employee_id)

        logger.info(
            "push_subscription_registered",
            extra={"employee_id": employee_id, "endpoint": endpoint, "subscription_count": len(current)},
        )
        return True

    async def list(self, employee_id: str) -> list[dict[str, Any]]:
        record = await asyncio.to_thread(self._store.get_employee, employee_id)
        if record is None:
            return []
        return normalize_subscription_list(record.push_subscriptions, employee_id=employee_id)

    async def remove_by_endpoint(self, employee_id: str, endpoint: str) -> bool:
        normalized_endpoint = endpoint.strip()
        if not normalized_endpoint:
            return False

        async with self._lock_for(employee_id):
            record = await asyncio.to_thread(self._store.get_employee, employee_id)
            if record is None:
                return False

            current = normalize_subscription_list(record.push_subscriptions, employee_id=employee_id)
            remaining = [item for item in current if subscription_endpoint(item) != normalized_endpoint]
            if len(remaining) == len(current):
                return False

            await asyncio.to_thread(
                self._store.update_employee_fields,
                employee_id,
                push_subscriptions=remaining,
            )

        logger.info(
            "push_subscription_removed",
            extra={"employee_id": employee_id, "endpoint": normalized_endpoint},
        )
        return True

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from staffnotify.services.dispatcher import DispatchSummary, NotificationDispatcher, NotificationPayload
from staffnotify.services.employee_store import EmployeeStore

logger = logging.getLogger("staffnotify.notification_events")


def login_detected_payload(email: str | None, at: datetime) -> NotificationPayload:
    who = email or "your account"
    return NotificationPayload(
        title="New Login Detected",
        message=f"Login detected for {who} at {at.strftime('%H:%M:%S')}",
        url="/",
    )


def password_changed_payload() -> NotificationPayload:
    return NotificationPayload(
        title="Password Changed",
        message="Your password has been successfully updated.",
        url="/profile",
    )


def project_created_payload(project_name: str) -> NotificationPayload:
    return NotificationPayload(
        title="New Activity Available",
        message=f'A new activity "{project_name}" has been posted. Check it out!',
        url="/inline-activities",
    )


async def notify_login(
    dispatcher: NotificationDispatcher,
    store: EmployeeStore,
    employee_id: str,
    *,
    email: str | None = None,
    now_utc: datetime | None = None,
) -> asyncio.Task[DispatchSummary]:
    """Queue the login alert and stamp ``last_login``; the alert is not awaited."""
    logged_in_at = now_utc or datetime.now(timezone.utc)
    task = dispatcher.send_to_user_background(employee_id, login_detected_payload(email, logged_in_at))
    updated = await asyncio.to_thread(store.update_employee_fields, employee_id, last_login=logged_in_at)
    if not updated:
        logger.warning("login_timestamp_not_recorded", extra={"employee_id": employee_id})
    return task


def notify_password_changed(
    dispatcher: NotificationDispatcher,
    employee_id: str,
) -> asyncio.Task[DispatchSummary]:
    return dispatcher.send_to_user_background(employee_id, password_changed_payload())


def notify_project_created(
    dispatcher: NotificationDispatcher,
    project_name: str,
    *,
    excluded_role: str = "Manager",
) -> asyncio.Task[DispatchSummary]:
    return dispatcher.broadcast_to_role_background(excluded_role, project_created_payload(project_name))


async def record_profile_update(
    store: EmployeeStore,
    employee_id: str,
    *,
    now_utc: datetime | None = None,
) -> bool:
    return await asyncio.to_thread(
        store.update_employee_fields,
        employee_id,
        updated_at=now_utc or datetime.now(timezone.utc),
    )

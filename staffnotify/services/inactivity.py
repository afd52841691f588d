from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from staffnotify.services.dispatcher import NotificationDispatcher, NotificationPayload
from staffnotify.services.employee_store import EmployeeRecord, EmployeeStore
from staffnotify.settings import Settings

logger = logging.getLogger("staffnotify.inactivity")

EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)
DEFAULT_WINDOW = timedelta(days=15)
DEFAULT_RUN_TIME_LOCAL = time(10, 0)
DEFAULT_TIMEZONE = "Asia/Kolkata"
FALLBACK_TIMEZONE = "UTC"
REMINDER_URL = "/details"
REMINDER_ICON = "/Logo/taking-off.png"
REMINDER_IMAGE = "/Logo/MainLogo.png"


class SchedulerState(str, enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return EPOCH_UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_inactive(employee: EmployeeRecord, cutoff: datetime) -> bool:
    """Both the last login and the last profile update must be strictly older than ``cutoff``."""
    cutoff_utc = _as_utc(cutoff)
    return _as_utc(employee.last_login) < cutoff_utc and _as_utc(employee.updated_at) < cutoff_utc


def scheduler_timezone(name: str | None) -> ZoneInfo:
    normalized = (name or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(normalized)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("scheduler_timezone_unknown", extra={"timezone_name": normalized})
        return ZoneInfo(FALLBACK_TIMEZONE)


def next_run_at_utc(reference_utc: datetime, run_time_local: time, tz: ZoneInfo) -> datetime:
    reference_local = _as_utc(reference_utc).astimezone(tz)
    candidate = datetime.combine(reference_local.date(), run_time_local, tzinfo=tz)
    if candidate <= reference_local:
        candidate = datetime.combine(reference_local.date() + timedelta(days=1), run_time_local, tzinfo=tz)
    return candidate.astimezone(timezone.utc)


def build_reminder_payload(window: timedelta) -> NotificationPayload:
    return NotificationPayload(
        title="Update Your Details",
        message=(
            f"It's been {window.days} days! "
            "Please update your Skills and Availability in the Details screen."
        ),
        url=REMINDER_URL,
        icon=REMINDER_ICON,
        image=REMINDER_IMAGE,
    )


class InactivityScheduler:
    """Daily scan that reminds stale employees to refresh their details.

    The timer task is owned by the instance: ``start()`` and ``stop()`` bound its
    lifetime, and ``run_once()`` performs a single scan without any timer.
    """

    def __init__(
        self,
        *,
        store: EmployeeStore,
        dispatcher: NotificationDispatcher,
        window: timedelta = DEFAULT_WINDOW,
        run_time_local: time = DEFAULT_RUN_TIME_LOCAL,
        timezone_name: str | None = None,
        excluded_role: str = "Manager",
    ) -> None:
        if window <= timedelta(0):
            raise ValueError("Inactivity window must be positive.")
        self._store = store
        self._dispatcher = dispatcher
        self._window = window
        self._run_time_local = run_time_local.replace(second=0, microsecond=0)
        self._tz = scheduler_timezone(timezone_name)
        self._excluded_role = excluded_role
        self._reminder = build_reminder_payload(window)
        self._state = SchedulerState.IDLE
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: EmployeeStore,
        dispatcher: NotificationDispatcher,
    ) -> InactivityScheduler:
        return cls(
            store=store,
            dispatcher=dispatcher,
            window=timedelta(days=settings.inactivity_window_days),
            run_time_local=settings.inactivity_run_time_local,
            timezone_name=settings.scheduler_timezone,
            excluded_role=settings.manager_role_type,
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_run_at(self, reference_utc: datetime | None = None) -> datetime:
        return next_run_at_utc(reference_utc or datetime.now(timezone.utc), self._run_time_local, self._tz)

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        logger.info(
            "inactivity_scheduler_started",
            extra={
                "window_days": self._window.days,
                "run_time_local": self._run_time_local.strftime("%H:%M"),
                "timezone_name": self._tz.key,
                "next_run_at_utc": self.next_run_at().isoformat(),
            },
        )

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._stop_event = None
        self._task = None

    async def run_once(self, now_utc: datetime | None = None) -> int:
        if self._state is SchedulerState.RUNNING:
            logger.warning("inactivity_scan_skipped_overlap")
            return 0

        self._state = SchedulerState.RUNNING
        try:
            reference_utc = _as_utc(now_utc or datetime.now(timezone.utc))
            cutoff = reference_utc - self._window
            try:
                employees = await asyncio.to_thread(
                    self._store.list_employees,
                    exclude_role_type=self._excluded_role,
                )
            except Exception:
                logger.exception("inactivity_scan_fetch_failed", extra={"cutoff_utc": cutoff.isoformat()})
                return 0

            due = [
                employee
                for employee in employees
                if employee.role_type != self._excluded_role and is_inactive(employee, cutoff)
            ]
            await asyncio.gather(
                *(self._dispatcher.send_to_user(employee.employee_id, self._reminder) for employee in due)
            )
            logger.info(
                "inactivity_scan_complete",
                extra={
                    "cutoff_utc": cutoff.isoformat(),
                    "evaluated": len(employees),
                    "notified": len(due),
                },
            )
            return len(due)
        finally:
            self._state = SchedulerState.IDLE

    async def _loop(self, stop_event: asyncio.Event) -> None:
        reference_utc = datetime.now(timezone.utc)
        while not stop_event.is_set():
            fire_at = self.next_run_at(reference_utc)
            delay_seconds = max(0.0, (fire_at - datetime.now(timezone.utc)).total_seconds())
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay_seconds)
            except asyncio.TimeoutError:
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("inactivity_scan_tick_failed")
            # An early wake-up must not fire the same slot twice.
            reference_utc = max(datetime.now(timezone.utc), fire_at)

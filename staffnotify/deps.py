from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from staffnotify.services.dispatcher import NotificationDispatcher
from staffnotify.services.employee_store import EmployeeStore
from staffnotify.services.inactivity import InactivityScheduler
from staffnotify.services.push_transport import WebPushTransport
from staffnotify.services.subscriptions import SubscriptionRegistry
from staffnotify.settings import Settings, get_settings


@dataclass(frozen=True, slots=True)
class NotificationServices:
    store: EmployeeStore
    registry: SubscriptionRegistry
    dispatcher: NotificationDispatcher
    scheduler: InactivityScheduler


def build_notification_services(settings: Settings, store: EmployeeStore | None = None) -> NotificationServices:
    resolved_store = store or EmployeeStore()
    registry = SubscriptionRegistry(resolved_store)
    dispatcher = NotificationDispatcher(
        store=resolved_store,
        registry=registry,
        transport=WebPushTransport(settings),
        settings=settings,
    )
    scheduler = InactivityScheduler.from_settings(settings, store=resolved_store, dispatcher=dispatcher)
    return NotificationServices(
        store=resolved_store,
        registry=registry,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )


@lru_cache
def get_notification_services() -> NotificationServices:
    return build_notification_services(get_settings())


def get_subscription_registry() -> SubscriptionRegistry:
    return get_notification_services().registry

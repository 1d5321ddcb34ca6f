from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


logger = logging.getLogger("teamspace.events")


class Channel(str, Enum):
    TASKS = "tasks-update"
    PROJECTS = "projects-update"
    PROJECT_MEMBERS = "project-members-update"
    PROJECT_DOCUMENTS = "project-documents-update"
    PROJECT_NOTES = "project-notes-update"
    TASK_COMMENTS = "task-comments-update"
    EMAIL_TEMPLATES = "email-templates-update"
    ACTIVITY = "activity-update"
    NOTIFICATIONS = "notification-update"


@dataclass
class InternalEvent:
    channel: Channel
    payload: dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[InternalEvent], None]


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``subscribe``; views release it on teardown.

    ``active`` turns False once unsubscribed, so a view can drop the result of a
    request that completes after it was torn down.
    """

    channel: Channel
    listener: EventListener
    _bus: "WorkspaceEventBus | None" = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._bus is not None and self._bus.is_subscribed(self)

    def unsubscribe(self) -> None:
        if self._bus is not None:
            self._bus.unsubscribe(self)


class WorkspaceEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[Channel, list[Subscription]] = defaultdict(list)

    def subscribe(self, channel: Channel | str, listener: EventListener) -> Subscription:
        resolved = Channel(channel)
        subscription = Subscription(channel=resolved, listener=listener, _bus=self)
        self._subscribers[resolved].append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        listeners = self._subscribers.get(subscription.channel)
        if listeners and subscription in listeners:
            listeners.remove(subscription)

    def is_subscribed(self, subscription: Subscription) -> bool:
        return subscription in self._subscribers.get(subscription.channel, [])

    def subscriber_count(self, channel: Channel | str) -> int:
        return len(self._subscribers.get(Channel(channel), []))

    def publish(self, channel: Channel | str, payload: dict[str, Any] | None = None) -> None:
        resolved = Channel(channel)
        event = InternalEvent(channel=resolved, payload=dict(payload or {}))
        # Snapshot: listeners may unsubscribe while being notified.
        for subscription in list(self._subscribers.get(resolved, [])):
            try:
                subscription.listener(event)
            except Exception as exc:
                logger.exception("event_listener_failed", extra={"channel": resolved.value, "error": str(exc)})


event_bus = WorkspaceEventBus()

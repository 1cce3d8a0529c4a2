"""
Client-side optimistic status toggling for reminder lists.

Typical wiring::

    gateway = HttpReminderGateway.from_settings()
    cache = ReminderCache()
    cache.register_fetcher(REMINDERS_KEY, gateway.list_reminders)
    controller = ToggleController(cache, gateway)
    item = ReminderItem(reminder, controller)
    item.on_checked_change(True)
"""

from .cache import REMINDERS_KEY, ReminderCache, Snapshot
from .gateway import HttpReminderGateway, MutationFailed, ReminderStatusGateway
from .toggle import PendingMutation, ReminderItem, ToggleController, TogglePhase, apply_status

__all__ = [
    "REMINDERS_KEY",
    "HttpReminderGateway",
    "MutationFailed",
    "PendingMutation",
    "ReminderCache",
    "ReminderItem",
    "ReminderStatusGateway",
    "Snapshot",
    "ToggleController",
    "TogglePhase",
    "apply_status",
]

"""
Optimistic completion toggling.

A toggle runs in three phases around a single await on the persistence call:

1. apply: cancel any refresh of the cache key, capture the current snapshot,
   write a copy with the target reminder's ``is_completed`` flipped, and update
   the displayed checkbox;
2. execute: call ``ReminderStatusGateway.update_status``;
3. reconcile: on failure restore the captured snapshot and the checkbox; in
   every case invalidate the cache key afterwards so the next read comes from
   the server.

Overlapping toggles resolve as last-write-wins per reminder: a failed
operation restores its whole snapshot if nothing else has written the cache
key since its own optimistic write. Otherwise it restores only its own
reminder entry, and only if no later toggle was issued for that reminder. The
checkbox is reset under the same condition, to the reminder's last known
stored flag. The invalidation that closes every operation brings the cache
back in line with the server either way.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Hashable, Optional, Protocol, Set

from ..schemas import ReminderOut, ReminderStatusRequest
from .cache import REMINDERS_KEY, ReminderCache, Snapshot
from .gateway import ReminderStatusGateway

logger = logging.getLogger(__name__)


class TogglePhase(str, Enum):
    IDLE = "idle"
    OPTIMISTICALLY_APPLIED = "optimistically_applied"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    INVALIDATED = "invalidated"


class CheckedDisplay(Protocol):
    def set_checked(self, checked: bool) -> None: ...


@dataclass
class PendingMutation:
    """State of one toggle from its optimistic write until it settles."""

    reminder_id: str
    target: bool
    previous_snapshot: Optional[Snapshot]
    previous_status: bool
    cache_version: int
    sequence: int
    phase: TogglePhase = TogglePhase.IDLE


def apply_status(snapshot: Snapshot, reminder_id: str, is_completed: bool) -> Snapshot:
    """Return snapshot with one reminder's flag set; order and other entries are kept."""
    return tuple(
        r.model_copy(update={"is_completed": is_completed}) if r.id == reminder_id else r for r in snapshot
    )


def restore_entry(snapshot: Snapshot, previous: ReminderOut) -> Snapshot:
    """Return snapshot with the entry sharing previous.id replaced by previous."""
    return tuple(previous if r.id == previous.id else r for r in snapshot)


def _find(snapshot: Optional[Snapshot], reminder_id: str) -> Optional[ReminderOut]:
    if snapshot is None:
        return None
    return next((r for r in snapshot if r.id == reminder_id), None)


# PUBLIC_INTERFACE
class ToggleController:
    """
    Runs optimistic completion toggles against one cache key.

    One controller should serve every reminder shown from that key, since it
    tracks the order in which toggles are issued.
    """

    def __init__(self, cache: ReminderCache, gateway: ReminderStatusGateway, key: Hashable = REMINDERS_KEY) -> None:
        self._cache = cache
        self._gateway = gateway
        self._key = key
        self._sequence: Dict[str, int] = {}
        # last stored flag the server confirmed, per reminder id
        self._confirmed: Dict[str, bool] = {}

    @property
    def key(self) -> Hashable:
        return self._key

    async def toggle(self, reminder: ReminderOut, new_status: bool, display: Optional[CheckedDisplay] = None) -> None:
        """
        Set a reminder's completion flag optimistically.

        Persistence failures are rolled back and logged, never raised.

        Raises:
            ValueError: if the reminder has no id or no owner. Nothing is
                written in that case.
        """
        if not reminder.id:
            raise ValueError("reminder id is required")
        if not reminder.created_by:
            raise ValueError(f"reminder {reminder.id} has no owner; status cannot be changed")

        pending = await self._apply(reminder, new_status, display)
        try:
            try:
                stored = await self._gateway.update_status(
                    ReminderStatusRequest(id=reminder.id, created_by=reminder.created_by, is_completed=new_status)
                )
            except Exception as exc:
                self._rollback(pending, reminder, display, exc)
            else:
                self._confirmed[reminder.id] = stored.is_completed
                pending.phase = TogglePhase.CONFIRMED
                logger.debug("Reminder %s is_completed=%s confirmed", reminder.id, new_status)
        finally:
            self._cache.invalidate(self._key)
            pending.phase = TogglePhase.INVALIDATED

    async def _apply(
        self, reminder: ReminderOut, new_status: bool, display: Optional[CheckedDisplay]
    ) -> PendingMutation:
        await self._cache.cancel_in_flight(self._key)

        # no awaits from here on: read, write and display update happen as one step
        previous = self._cache.read(self._key)
        if previous is not None:
            self._cache.write(self._key, apply_status(previous, reminder.id, new_status))
        previous_entry = _find(previous, reminder.id)
        if previous_entry is not None:
            previous_status = previous_entry.is_completed
        else:
            previous_status = self._confirmed.get(reminder.id, reminder.is_completed)
        if display is not None:
            display.set_checked(new_status)

        sequence = self._sequence.get(reminder.id, 0) + 1
        self._sequence[reminder.id] = sequence
        pending = PendingMutation(
            reminder_id=reminder.id,
            target=new_status,
            previous_snapshot=previous,
            previous_status=previous_status,
            cache_version=self._cache.version(self._key),
            sequence=sequence,
            phase=TogglePhase.OPTIMISTICALLY_APPLIED,
        )
        logger.debug("Reminder %s optimistically set to is_completed=%s", reminder.id, new_status)
        return pending

    def _rollback(
        self,
        pending: PendingMutation,
        reminder: ReminderOut,
        display: Optional[CheckedDisplay],
        exc: Exception,
    ) -> None:
        latest = self._sequence.get(reminder.id) == pending.sequence
        if pending.previous_snapshot is not None:
            current = self._cache.read(self._key)
            previous_entry = _find(pending.previous_snapshot, reminder.id)
            if self._cache.version(self._key) == pending.cache_version:
                self._cache.write(self._key, pending.previous_snapshot)
            elif latest and previous_entry is not None and _find(current, reminder.id) is not None:
                self._cache.write(self._key, restore_entry(current, previous_entry))
            else:
                logger.debug("Reminder %s superseded since this change; cache not restored", reminder.id)
        if display is not None and latest:
            display.set_checked(pending.previous_status)
        pending.phase = TogglePhase.ROLLED_BACK
        logger.warning("Status change for reminder %s failed, rolled back: %s", reminder.id, exc)


# PUBLIC_INTERFACE
class ReminderItem:
    """
    A rendered reminder row: the displayed checkbox state plus the toggle
    wiring behind it.

    ``checked`` starts from the reminder's stored flag. After ``unmount`` the
    row ignores display updates, while any toggle still in flight keeps
    reconciling the shared cache.
    """

    def __init__(self, reminder: ReminderOut, controller: ToggleController) -> None:
        self.reminder = reminder
        self.checked = reminder.is_completed
        self.mounted = True
        self._controller = controller
        self._tasks: Set["asyncio.Task[None]"] = set()

    def set_checked(self, checked: bool) -> None:
        if self.mounted:
            self.checked = checked

    def unmount(self) -> None:
        self.mounted = False

    async def toggle(self, checked: bool) -> None:
        await self._controller.toggle(self.reminder, checked, display=self)

    def on_checked_change(self, checked: bool) -> "asyncio.Task[None]":
        """Checkbox callback: start a toggle in the background and return its task."""
        task = asyncio.get_running_loop().create_task(self.toggle(checked))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_settled(self) -> None:
        """Wait for every toggle started from this row."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

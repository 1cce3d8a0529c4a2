import asyncio
from datetime import datetime

import pytest

from reminders_api.optimistic import (
    REMINDERS_KEY,
    MutationFailed,
    ReminderCache,
    ReminderItem,
    ToggleController,
    apply_status,
)
from reminders_api.schemas import ReminderOut

NOW = datetime(2025, 1, 1, 9, 0, 0)


def make_reminder(rid, done=False, owner="owner"):
    return ReminderOut(
        id=rid,
        collection_id="inbox",
        title=f"Reminder {rid}",
        is_completed=done,
        created_by=owner,
        created_at=NOW,
        updated_at=NOW,
    )


async def settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


class RecordingCache(ReminderCache):
    """Records explicit writes and invalidations together with the snapshot at that moment."""

    def __init__(self):
        super().__init__()
        self.events = []

    def write(self, key, snapshot):
        super().write(key, snapshot)
        self.events.append(("write", self.read(key)))

    def invalidate(self, key):
        self.events.append(("invalidate", self.read(key)))
        super().invalidate(key)

    def kinds(self):
        return [kind for kind, _ in self.events]


class ScriptedGateway:
    """Holds each status call open until the test confirms or fails it."""

    def __init__(self, reminders):
        self.server = {r.id: r for r in reminders}
        self.calls = []
        self.fetches = 0

    async def update_status(self, request):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((request, future))
        return await future

    def confirm(self, index=0):
        request, future = self.calls[index]
        stored = self.server[request.id].model_copy(update={"is_completed": request.is_completed})
        self.server[request.id] = stored
        future.set_result(stored)

    def fail(self, index=0, exc=None):
        request, future = self.calls[index]
        future.set_exception(exc or MutationFailed(request.id, "HTTP 500: boom"))

    async def list_reminders(self):
        self.fetches += 1
        return list(self.server.values())


def build(reminders, fetch=False):
    cache = RecordingCache()
    if reminders is not None:
        cache.write(REMINDERS_KEY, reminders)
    cache.events.clear()
    gateway = ScriptedGateway(reminders or [])
    if fetch:
        cache.register_fetcher(REMINDERS_KEY, gateway.list_reminders)
    return cache, gateway, ToggleController(cache, gateway)


def test_apply_status_changes_only_the_target():
    a, b = make_reminder("a"), make_reminder("b")
    derived = apply_status((a, b), "a", True)
    assert derived[0].is_completed is True
    assert derived[1] is b
    assert a.is_completed is False
    assert apply_status((a, b), "missing", True) == (a, b)


def test_optimistic_write_is_visible_before_server_answers():
    async def scenario():
        a, b, c = make_reminder("a"), make_reminder("b"), make_reminder("c", done=True)
        cache, gateway, controller = build([a, b, c])
        item = ReminderItem(b, controller)

        task = item.on_checked_change(True)
        await settle()

        assert len(gateway.calls) == 1
        snapshot = cache.read(REMINDERS_KEY)
        assert [r.id for r in snapshot] == ["a", "b", "c"]
        assert snapshot[1].is_completed is True
        assert snapshot[0] is a and snapshot[2] is c
        assert item.checked is True

        request = gateway.calls[0][0]
        assert (request.id, request.created_by, request.is_completed) == ("b", "owner", True)

        gateway.confirm()
        await task

    asyncio.run(scenario())


def test_success_keeps_optimistic_state_and_invalidates_once():
    async def scenario():
        a, b = make_reminder("a"), make_reminder("b")
        cache, gateway, controller = build([a, b])
        item = ReminderItem(a, controller)

        task = item.on_checked_change(True)
        await settle()
        gateway.confirm()
        await task

        assert cache.kinds() == ["write", "invalidate"]
        optimistic = cache.events[0][1]
        assert cache.read(REMINDERS_KEY) == optimistic
        assert optimistic[0].is_completed is True
        assert cache.is_stale(REMINDERS_KEY)
        assert item.checked is True

    asyncio.run(scenario())


def test_failure_restores_captured_snapshot_exactly():
    async def scenario():
        a, b, c = make_reminder("a"), make_reminder("b", done=True), make_reminder("c")
        cache, gateway, controller = build([a, b, c])
        original = cache.read(REMINDERS_KEY)
        item = ReminderItem(c, controller)

        task = item.on_checked_change(True)
        await settle()
        assert item.checked is True
        gateway.fail()
        await task

        assert task.exception() is None
        restored = cache.read(REMINDERS_KEY)
        assert restored == original
        assert all(x is y for x, y in zip(restored, original))
        assert item.checked is False
        assert cache.kinds() == ["write", "write", "invalidate"]
        # invalidation saw the restored snapshot, so it ran after the rollback
        assert cache.events[2][1] == original

    asyncio.run(scenario())


@pytest.mark.parametrize("outcome", ["confirm", "fail"])
def test_exactly_one_invalidation_after_reconciliation(outcome):
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build([x])

        task = asyncio.create_task(controller.toggle(x, True))
        await settle()
        assert "invalidate" not in cache.kinds()

        getattr(gateway, outcome)()
        await task

        assert cache.kinds().count("invalidate") == 1
        assert cache.kinds()[-1] == "invalidate"

    asyncio.run(scenario())


def test_toggle_never_alters_other_reminders():
    async def scenario():
        a, b = make_reminder("a"), make_reminder("b", done=True)
        cache, gateway, controller = build([a, b])

        task = asyncio.create_task(controller.toggle(a, True))
        await settle()
        assert cache.read(REMINDERS_KEY)[1] is b
        gateway.confirm()
        await task
        assert cache.read(REMINDERS_KEY)[1] is b

    asyncio.run(scenario())


def test_toggle_to_current_value_still_calls_server():
    async def scenario():
        done = make_reminder("done", done=True)
        cache, gateway, controller = build([done])

        task = asyncio.create_task(controller.toggle(done, True))
        await settle()

        assert len(gateway.calls) == 1
        assert cache.read(REMINDERS_KEY) == (done,)
        assert cache.kinds() == ["write"]
        gateway.confirm()
        await task

    asyncio.run(scenario())


def test_later_toggle_wins_over_earlier_failure():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build([x], fetch=True)
        item = ReminderItem(x, controller)

        first = item.on_checked_change(True)
        await settle()
        second = item.on_checked_change(False)
        await settle()
        assert cache.read(REMINDERS_KEY)[0].is_completed is False

        gateway.fail(0)
        await first
        # the earlier operation's snapshot is not restored over the later write
        assert cache.kinds() == ["write", "write", "invalidate"]
        assert cache.read(REMINDERS_KEY)[0].is_completed is False
        assert item.checked is False

        gateway.confirm(1)
        await second
        await cache.wait_idle(REMINDERS_KEY)

        assert cache.kinds().count("invalidate") == 2
        assert cache.read(REMINDERS_KEY)[0].is_completed is False
        assert item.checked is False

    asyncio.run(scenario())


def test_earlier_failure_does_not_clobber_confirmed_later_toggle():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build([x], fetch=True)
        item = ReminderItem(x, controller)

        first = item.on_checked_change(True)
        await settle()
        second = item.on_checked_change(False)
        await settle()

        gateway.confirm(1)
        await second
        await cache.wait_idle(REMINDERS_KEY)

        gateway.fail(0)
        await first
        await cache.wait_idle(REMINDERS_KEY)

        assert "write" not in cache.kinds()[2:]
        assert cache.read(REMINDERS_KEY)[0].is_completed is False
        assert gateway.server["x"].is_completed is False
        assert item.checked is False

    asyncio.run(scenario())


def test_rollback_is_reconciled_by_refetch():
    async def scenario():
        a, b = make_reminder("a"), make_reminder("b")
        cache, gateway, controller = build([a, b], fetch=True)

        task = asyncio.create_task(controller.toggle(b, True))
        await settle()
        gateway.fail()
        await task
        await cache.wait_idle(REMINDERS_KEY)

        assert gateway.fetches == 1
        assert cache.read(REMINDERS_KEY) == (a, b)
        assert not cache.is_stale(REMINDERS_KEY)

    asyncio.run(scenario())


def test_in_flight_refresh_is_cancelled_before_optimistic_write():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build([x])
        gate = asyncio.Event()
        calls = []

        async def fetcher():
            calls.append(len(calls))
            if len(calls) == 1:
                await gate.wait()
                return [x]
            return list(gateway.server.values())

        cache.register_fetcher(REMINDERS_KEY, fetcher)
        cache.invalidate(REMINDERS_KEY)
        await settle()
        assert cache.is_fetching(REMINDERS_KEY)

        task = asyncio.create_task(controller.toggle(x, True))
        await settle()
        assert not cache.is_fetching(REMINDERS_KEY)

        gate.set()
        await settle()
        assert cache.read(REMINDERS_KEY)[0].is_completed is True

        gateway.confirm()
        await task
        await cache.wait_idle(REMINDERS_KEY)
        assert len(calls) == 2
        assert cache.read(REMINDERS_KEY)[0].is_completed is True

    asyncio.run(scenario())


def test_unmounted_row_still_reconciles_cache():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build([x])
        item = ReminderItem(x, controller)

        task = item.on_checked_change(True)
        await settle()
        item.unmount()
        gateway.fail()
        await item.wait_settled()

        assert task.done()
        assert cache.read(REMINDERS_KEY) == (x,)
        assert item.checked is True
        assert cache.kinds()[-1] == "invalidate"

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "reminder",
    [make_reminder("x", owner=None), make_reminder("x", owner=""), make_reminder("")],
)
def test_toggle_requires_id_and_owner(reminder):
    async def scenario():
        cache, gateway, controller = build([make_reminder("x")])
        with pytest.raises(ValueError):
            await controller.toggle(reminder, True)
        assert cache.events == []
        assert gateway.calls == []

    asyncio.run(scenario())


def test_any_gateway_error_is_absorbed():
    class BrokenGateway:
        async def update_status(self, request):
            raise RuntimeError("socket closed")

    async def scenario():
        x = make_reminder("x")
        cache = RecordingCache()
        cache.write(REMINDERS_KEY, [x])
        item = ReminderItem(x, ToggleController(cache, BrokenGateway()))

        await item.toggle(True)

        assert cache.read(REMINDERS_KEY) == (x,)
        assert item.checked is False

    asyncio.run(scenario())


def test_toggle_with_empty_cache_only_updates_display():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build(None)
        gateway.server["x"] = x
        item = ReminderItem(x, controller)

        task = item.on_checked_change(True)
        await settle()
        assert item.checked is True
        assert cache.read(REMINDERS_KEY) is None

        gateway.fail()
        await task
        assert item.checked is False
        assert cache.kinds() == ["invalidate"]

    asyncio.run(scenario())


def test_cancelled_toggle_still_invalidates():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build([x])

        task = asyncio.create_task(controller.toggle(x, True))
        await settle()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cache.kinds() == ["write", "invalidate"]

    asyncio.run(scenario())


def test_failed_untoggle_after_confirmed_toggle_keeps_checked():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build([x], fetch=True)
        item = ReminderItem(x, controller)

        first = item.on_checked_change(True)
        await settle()
        gateway.confirm(0)
        await first
        await cache.wait_idle(REMINDERS_KEY)
        assert cache.read(REMINDERS_KEY)[0].is_completed is True

        second = item.on_checked_change(False)
        await settle()
        assert item.checked is False
        gateway.fail(1)
        await second
        await cache.wait_idle(REMINDERS_KEY)

        assert item.checked is True
        assert cache.read(REMINDERS_KEY)[0].is_completed is True
        assert gateway.server["x"].is_completed is True

    asyncio.run(scenario())


def test_failed_untoggle_without_cache_resets_to_confirmed_flag():
    async def scenario():
        x = make_reminder("x")
        cache, gateway, controller = build(None)
        gateway.server["x"] = x
        item = ReminderItem(x, controller)

        first = item.on_checked_change(True)
        await settle()
        gateway.confirm(0)
        await first

        second = item.on_checked_change(False)
        await settle()
        gateway.fail(1)
        await second

        assert item.checked is True

    asyncio.run(scenario())


def test_failure_restores_own_entry_after_other_reminder_toggled():
    async def scenario():
        a, b = make_reminder("a"), make_reminder("b")
        cache, gateway, controller = build([a, b])
        item_a, item_b = ReminderItem(a, controller), ReminderItem(b, controller)

        task_a = item_a.on_checked_change(True)
        await settle()
        task_b = item_b.on_checked_change(True)
        await settle()

        gateway.fail(0)
        await task_a
        snapshot = cache.read(REMINDERS_KEY)
        assert snapshot[0] is a
        assert snapshot[1].is_completed is True
        assert item_a.checked is False
        assert item_b.checked is True

        gateway.confirm(1)
        await task_b
        snapshot = cache.read(REMINDERS_KEY)
        assert snapshot[0] is a
        assert snapshot[1].is_completed is True
        assert cache.kinds() == ["write", "write", "write", "invalidate", "invalidate"]

    asyncio.run(scenario())

import asyncio
from datetime import datetime, timedelta, timezone

from threadbridge.session.registry import ActiveRun, ThreadRegistry

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_upsert_creates_then_mutates() -> None:
    registry = ThreadRegistry()
    assert registry.get("t1") is None

    entry = registry.upsert("t1", lambda e: setattr(e, "session_id", "s1"))
    assert registry.get("t1") is entry
    assert entry.session_id == "s1"
    assert "t1" in registry
    assert len(registry) == 1

    again = registry.upsert("t1", lambda e: setattr(e, "active_run", ActiveRun("r1", "m1")))
    assert again is entry
    assert entry.session_id == "s1"
    assert entry.active_run == ActiveRun("r1", "m1")


def test_delete_returns_removed_entry() -> None:
    registry = ThreadRegistry()
    registry.upsert("t1")

    assert registry.delete("t1") is not None
    assert registry.delete("t1") is None
    assert registry.thread_ids() == []


def test_tracked_point_only_moves_forward() -> None:
    entry = ThreadRegistry().upsert("t1")

    entry.track("m2", T0 + timedelta(seconds=2))
    entry.track("m1", T0 + timedelta(seconds=1))
    assert entry.last_tracked_message_id == "m2"

    entry.track("m3", T0 + timedelta(seconds=3))
    assert entry.last_tracked_message_id == "m3"
    assert entry.last_tracked_at == T0 + timedelta(seconds=3)


def test_tracked_point_breaks_timestamp_ties_by_id() -> None:
    entry = ThreadRegistry().upsert("t1")

    entry.track("m5", T0)
    entry.track("m4", T0)
    assert entry.last_tracked_message_id == "m5"
    entry.track("m6", T0)
    assert entry.last_tracked_message_id == "m6"


def test_mark_handled_reports_duplicates() -> None:
    entry = ThreadRegistry().upsert("t1")

    assert entry.mark_handled("msg_a") is True
    assert entry.mark_handled("msg_a") is False
    assert entry.handled_remote_message_ids == {"msg_a"}


async def test_scope_serializes_same_thread() -> None:
    registry = ThreadRegistry()
    order: list[str] = []

    async def worker(name: str, delay: float) -> None:
        async with registry.scope("t1"):
            order.append(f"{name}:in")
            await asyncio.sleep(delay)
            order.append(f"{name}:out")

    await asyncio.gather(worker("a", 0.05), worker("b", 0.0))

    assert order == ["a:in", "a:out", "b:in", "b:out"]


async def test_scope_does_not_block_other_threads() -> None:
    registry = ThreadRegistry()
    release = asyncio.Event()
    entered = asyncio.Event()

    async def holder() -> None:
        async with registry.scope("t1"):
            await release.wait()

    async def other() -> None:
        async with registry.scope("t2"):
            entered.set()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    await asyncio.wait_for(other(), timeout=1.0)
    assert entered.is_set()
    assert registry.is_busy("t1") is True

    release.set()
    await task
    assert registry.is_busy("t1") is False


async def test_scope_slot_released_after_error() -> None:
    registry = ThreadRegistry()

    try:
        async with registry.scope("t1"):
            raise ValueError("boom")
    except ValueError:
        pass

    assert registry.is_busy("t1") is False
    async with registry.scope("t1"):
        assert registry.is_busy("t1") is True

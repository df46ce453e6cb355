import asyncio

import pytest

from smtp_simulator.clock import VirtualClock
from smtp_simulator.mail_queue import DuplicateMessageError, MailQueue
from smtp_simulator.models import MessageConfig, QueuedMessage


def make_message(msg_id: str, calls: list[str] | None = None) -> QueuedMessage:
    on_delivered = (lambda: calls.append(msg_id)) if calls is not None else (lambda: None)
    return QueuedMessage(
        id=msg_id,
        config=MessageConfig(subject=f"message {msg_id}"),
        queued_at=0.0,
        on_delivered=on_delivered,
    )


def test_enqueue_preserves_order_and_length():
    queue = MailQueue()
    assert len(queue) == 0

    assert queue.enqueue(make_message("a")) == 1
    assert queue.enqueue(make_message("b")) == 2

    assert [m.id for m in queue] == ["a", "b"]
    assert "a" in queue
    assert "z" not in queue


def test_duplicate_identifier_rejected():
    queue = MailQueue()
    queue.enqueue(make_message("a"))

    with pytest.raises(DuplicateMessageError) as excinfo:
        queue.enqueue(make_message("a"))

    assert excinfo.value.message_id == "a"
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_flush_delivers_in_enqueue_order_and_notifies_once():
    queue = MailQueue()
    notified: list[str] = []
    delivered: list[str] = []
    for msg_id in ("A", "B", "C"):
        queue.enqueue(make_message(msg_id, notified))

    async def deliver(message):
        delivered.append(message.id)

    result = await queue.flush(deliver)

    assert [m.id for m in result] == ["A", "B", "C"]
    assert delivered == ["A", "B", "C"]
    assert notified == ["A", "B", "C"]
    assert len(queue) == 0
    assert all(m.delivered for m in result)


@pytest.mark.asyncio
async def test_notifier_fires_after_delivery():
    queue = MailQueue()
    events: list[str] = []
    queue.enqueue(make_message("A", events))

    async def deliver(message):
        events.append(f"deliver {message.id}")

    await queue.flush(deliver)

    assert events == ["deliver A", "A"]


@pytest.mark.asyncio
async def test_empty_flush_is_silent():
    queue = MailQueue()
    started = []

    async def deliver(message):  # pragma: no cover - must not run
        raise AssertionError("nothing to deliver")

    result = await queue.flush(deliver, on_start=started.append)

    assert result == []
    assert started == []


@pytest.mark.asyncio
async def test_enqueue_during_flush_waits_for_next_flush():
    clock = VirtualClock()
    queue = MailQueue()
    notified: list[str] = []
    for msg_id in ("A", "B", "C"):
        queue.enqueue(make_message(msg_id, notified))

    async def deliver(message):
        await clock.sleep(1.0)

    flush = asyncio.create_task(queue.flush(deliver))
    await clock.sleep(1.5)
    assert queue.flushing
    assert len(queue) == 0
    queue.enqueue(make_message("D", notified))

    delivered = await flush

    assert [m.id for m in delivered] == ["A", "B", "C"]
    assert notified == ["A", "B", "C"]
    assert [m.id for m in queue] == ["D"]

    second = await queue.flush(deliver)
    assert [m.id for m in second] == ["D"]
    assert notified == ["A", "B", "C", "D"]


@pytest.mark.asyncio
async def test_concurrent_flushes_do_not_interleave():
    clock = VirtualClock()
    queue = MailQueue()
    order: list[str] = []
    queue.enqueue(make_message("A"))
    queue.enqueue(make_message("B"))

    async def deliver(message):
        order.append(f"start {message.id}")
        await clock.sleep(1.0)
        order.append(f"end {message.id}")

    first = asyncio.create_task(queue.flush(deliver))
    await clock.sleep(0.5)
    queue.enqueue(make_message("C"))
    second = asyncio.create_task(queue.flush(deliver))

    await asyncio.gather(first, second)

    assert order == ["start A", "end A", "start B", "end B", "start C", "end C"]


def test_drain_clears_queue_and_identifiers():
    queue = MailQueue()
    queue.enqueue(make_message("A"))

    assert [m.id for m in queue.drain()] == ["A"]
    assert len(queue) == 0
    queue.enqueue(make_message("A"))
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_failing_callback_does_not_drop_remaining_messages(caplog):
    queue = MailQueue()
    notified: list[str] = []

    def broken():
        raise RuntimeError("callback exploded")

    queue.enqueue(QueuedMessage(id="A", config=MessageConfig(), queued_at=0.0, on_delivered=broken))
    queue.enqueue(make_message("B", notified))
    queue.enqueue(make_message("C", notified))
    delivered: list[str] = []

    async def deliver(message):
        delivered.append(message.id)

    with caplog.at_level("ERROR"):
        result = await queue.flush(deliver)

    assert [m.id for m in result] == ["A", "B", "C"]
    assert delivered == ["A", "B", "C"]
    assert notified == ["B", "C"]
    assert all(m.delivered for m in result)
    assert len(queue) == 0
    assert "Delivery callback failed for queued message A" in caplog.text

import asyncio

import pytest

from smtp_simulator.clock import VirtualClock
from smtp_simulator.config_loader import SimulatorSettings
from smtp_simulator.core import SimulatorCore
from smtp_simulator.models import LogCategory, MessageConfig, QueuedMessage, SessionStatus

from tests.helpers import SequenceRandom, lossless, make_core


def sample_value(core, name, labels=None):
    return core.metrics.registry.get_sample_value(name, labels or {})


@pytest.mark.asyncio
async def test_send_delivers_when_recipient_online():
    core, observer, clock = make_core()
    delivered = []

    result = await core.send(lossless(), on_delivered=lambda: delivered.append("A"))

    assert result.status == SessionStatus.DELIVERED
    assert delivered == ["A"]
    assert core.running is False
    assert core.last_result is result
    assert clock.now() == pytest.approx(13.0)
    assert sample_value(core, "smtpsim_sessions_total", {"status": "delivered"}) == 1.0
    assert sample_value(core, "smtpsim_packets_sent_total") == 6.0


@pytest.mark.asyncio
async def test_second_send_is_ignored_while_running_online():
    core, observer, _ = make_core()

    first = asyncio.create_task(core.send(lossless()))
    await asyncio.sleep(0)
    assert core.running is True
    entries_before = len(observer.entries)

    skipped = await core.send(lossless(subject="ignored"))

    assert skipped.status == SessionStatus.SKIPPED
    assert len(observer.entries) == entries_before
    assert (await first).status == SessionStatus.DELIVERED
    assert core.last_config.subject != "ignored"


@pytest.mark.asyncio
async def test_sends_may_overlap_while_recipient_offline():
    core, _, _ = make_core(available=False)

    results = await asyncio.gather(core.send(lossless(subject="one")), core.send(lossless(subject="two")))

    assert [r.status for r in results] == [SessionStatus.QUEUED, SessionStatus.QUEUED]
    assert len(core.queue) == 2
    assert core.running is False


@pytest.mark.asyncio
async def test_running_flag_released_after_failure():
    core, _, _ = make_core()

    failed = await core.send(lossless(recipient="not-an-email"))
    assert failed.status == SessionStatus.FAILED
    assert core.running is False

    again = await core.send(lossless())
    assert again.status == SessionStatus.DELIVERED


@pytest.mark.asyncio
async def test_online_send_clears_previous_log():
    core, _, _ = make_core()

    await core.send(lossless(subject="first"))
    await core.send(lossless(subject="second"))

    lines = core.recorder.messages()
    assert "→ CLIENT: Subject: second" in lines
    assert "→ CLIENT: Subject: first" not in lines


@pytest.mark.asyncio
async def test_offline_send_keeps_previous_log():
    core, _, _ = make_core(available=False)

    await core.send(lossless(subject="first"))
    await core.send(lossless(subject="second"))

    assert core.recorder.messages().count("=== Email queued successfully! ===") == 2


@pytest.mark.asyncio
async def test_queued_messages_delivered_in_order_when_recipient_returns():
    core, observer, clock = make_core(available=False)
    delivered = []
    for name in ("A", "B", "C"):
        result = await core.send(lossless(subject=name), on_delivered=lambda n=name: delivered.append(n))
        assert result.status == SessionStatus.QUEUED
    assert len(core.queue) == 3
    assert delivered == []
    start = clock.now()

    flush = core.toggle_recipient()
    assert flush is not None
    flushed = await flush

    assert [m.config.subject for m in flushed] == ["A", "B", "C"]
    assert delivered == ["A", "B", "C"]
    assert len(core.queue) == 0
    assert clock.now() - start == pytest.approx(3 * 3.5)

    messages = observer.messages()
    assert "Receiver status changed to ONLINE" in messages
    assert "Processing 3 queued email(s)..." in messages
    assert "All 3 queued email(s) delivered!" in messages
    delivered_lines = [m for m in messages if m.endswith("delivered successfully!") and m.startswith("Email [ID:")]
    assert delivered_lines == [f"Email [ID: {m.id}] delivered successfully!" for m in flushed]
    assert sample_value(core, "smtpsim_queued_deliveries_total") == 3.0
    assert sample_value(core, "smtpsim_queue_length") == 0.0


@pytest.mark.asyncio
async def test_message_enqueued_during_flush_waits_for_next_flush():
    core, observer, _ = make_core(available=False)
    delivered = []
    for name in ("A", "B", "C"):
        await core.send(lossless(subject=name), on_delivered=lambda n=name: delivered.append(n))

    flush = core.toggle_recipient()
    core.set_recipient(False)
    assert "3 email(s) waiting in queue" in observer.messages()

    late = await core.send(
        lossless(subject="D", server_delay=0, network_delay=0),
        on_delivered=lambda: delivered.append("D"),
    )
    assert late.status == SessionStatus.QUEUED
    assert core.queue.flushing

    flushed = await flush
    assert [m.config.subject for m in flushed] == ["A", "B", "C"]
    assert delivered == ["A", "B", "C"]
    assert [m.config.subject for m in core.queue] == ["D"]

    second = core.toggle_recipient()
    await second
    assert delivered == ["A", "B", "C", "D"]
    assert len(core.queue) == 0


@pytest.mark.asyncio
async def test_toggle_with_empty_queue_only_notifies_availability():
    core, observer, _ = make_core(available=False)
    updates_before = observer.stats_updates

    flush = core.toggle_recipient()

    assert flush is None
    assert observer.availability == [True]
    assert observer.stats_updates == updates_before
    assert observer.messages() == ["Receiver status changed to ONLINE"]


@pytest.mark.asyncio
async def test_going_offline_with_empty_queue_logs_warning_only():
    core, observer, _ = make_core()

    assert core.toggle_recipient() is None

    assert observer.availability == [False]
    assert observer.messages(LogCategory.WARNING) == ["Receiver status changed to OFFLINE"]
    assert not core.recipient_available


@pytest.mark.asyncio
async def test_set_recipient_to_current_value_is_silent():
    core, observer, _ = make_core()

    assert core.set_recipient(True) is None
    assert observer.availability == []


@pytest.mark.asyncio
async def test_report_reflects_last_session():
    core, _, _ = make_core(rng=SequenceRandom([0.0], fallback=0.99))

    await core.send(lossless(packet_loss=20, subject="Report me"))
    report = core.report()

    assert "SMTP PROTOCOL SIMULATOR - REPORT" in report
    assert "• Subject: Report me" in report
    assert "• Total Packets Sent: 7" in report
    assert "• Packets Lost: 1" in report
    assert "• Success Rate: 85.71%" in report
    assert "=== Starting SMTP Session ===" in report


@pytest.mark.asyncio
async def test_handle_command_send_and_status():
    core, _, _ = make_core(available=False)

    result = await core.handle_command("send", {"subject": "via command", "packet_loss": 0, "server_delay": 0})
    assert result["ok"] is True
    assert result["status"] == "queued"

    status = await core.handle_command("status")
    assert status["ok"] is True
    assert status["queue_length"] == 1
    assert status["recipient_available"] is False
    assert status["running"] is False

    listing = await core.handle_command("listQueue")
    assert [m["subject"] for m in listing["messages"]] == ["via command"]


@pytest.mark.asyncio
async def test_handle_command_send_rejects_invalid_payload():
    core, _, _ = make_core()

    result = await core.handle_command("send", {"packet_loss": 150})

    assert result["ok"] is False
    assert "packet_loss" in result["error"]


@pytest.mark.asyncio
async def test_handle_command_send_without_waiting():
    core, _, _ = make_core()

    result = await core.handle_command("send", {"wait": False, "packet_loss": 0})
    assert result == {"ok": True, "scheduled": True}

    await asyncio.sleep(0)
    assert core.running is True

    while core.running:
        await asyncio.sleep(0)
    assert core.last_result.status == SessionStatus.DELIVERED


@pytest.mark.asyncio
async def test_handle_command_recipient_commands():
    core, _, _ = make_core(available=False)
    await core.send(lossless())

    toggled = await core.handle_command("toggleRecipient")
    assert toggled == {"ok": True, "available": True, "flushing": True}
    await core.flush_task

    missing = await core.handle_command("setRecipient", {})
    assert missing["ok"] is False

    forced = await core.handle_command("setRecipient", {"available": False})
    assert forced == {"ok": True, "available": False, "flushing": False}


@pytest.mark.asyncio
async def test_handle_command_log_report_and_unknown():
    core, _, _ = make_core()
    await core.send(lossless())

    log = await core.handle_command("log")
    assert log["entries"][0]["message"] == "=== Starting SMTP Session ==="
    assert log["entries"][0]["category"] == "command"

    report = await core.handle_command("report")
    assert "TRANSMISSION STATISTICS" in report["report"]

    assert await core.handle_command("clearLog") == {"ok": True}
    assert (await core.handle_command("log"))["entries"] == []

    assert await core.handle_command("nope") == {"ok": False, "error": "unknown command"}


def test_from_settings_applies_tunables():
    settings = SimulatorSettings(probe_interval=0.2, forward_transit=0.4, max_retries=3, loss_decay=0.5)

    core = SimulatorCore.from_settings(settings, recipient_available=False)

    assert core.timings.probe_interval == 0.2
    assert core.timings.forward_transit == 0.4
    assert core.channel.max_retries == 3
    assert core.channel.loss_decay == 0.5
    assert core.recipient_available is False


def test_independent_cores_do_not_share_state():
    first = SimulatorCore(recipient_available=False)
    second = SimulatorCore()

    assert first.queue is not second.queue
    assert first.metrics.registry is not second.metrics.registry
    assert first.recipient_available != second.recipient_available


@pytest.mark.asyncio
async def test_failing_notifier_does_not_lose_rest_of_queue():
    core, _, _ = make_core(available=False)
    delivered = []

    def broken():
        raise RuntimeError("callback exploded")

    await core.send(lossless(subject="A"), on_delivered=broken)
    for name in ("B", "C"):
        await core.send(lossless(subject=name), on_delivered=lambda n=name: delivered.append(n))

    flushed = await core.toggle_recipient()

    assert [m.config.subject for m in flushed] == ["A", "B", "C"]
    assert delivered == ["B", "C"]
    assert len(core.queue) == 0


@pytest.mark.asyncio
async def test_failing_notifier_on_immediate_delivery_still_records_result():
    core, _, _ = make_core()

    def broken():
        raise RuntimeError("callback exploded")

    result = await core.send(lossless(), on_delivered=broken)

    assert result.status == SessionStatus.DELIVERED
    assert core.last_result is result
    assert core.running is False
    assert sample_value(core, "smtpsim_sessions_total", {"status": "delivered"}) == 1.0


@pytest.mark.asyncio
async def test_send_command_uses_configured_message_defaults():
    settings = SimulatorSettings(sender="alice@corp.example", subject="From settings", packet_loss=0)
    core = SimulatorCore.from_settings(settings, clock=VirtualClock(), rng=SequenceRandom(), recipient_available=False)

    result = await core.handle_command("send", {})
    assert result["ok"] is True
    assert core.last_config.sender == "alice@corp.example"
    assert core.last_config.subject == "From settings"
    assert core.last_config.packet_loss == 0

    await core.handle_command("send", {"subject": "Override", "sender": None})
    assert core.last_config.subject == "Override"
    assert core.last_config.sender == "alice@corp.example"


@pytest.mark.asyncio
async def test_scheduled_send_is_tracked_until_done():
    core, _, _ = make_core()

    await core.handle_command("send", {"wait": False, "packet_loss": 0})
    assert len(core._background_tasks) == 1
    task = next(iter(core._background_tasks))

    await task

    assert core._background_tasks == set()
    assert core.last_result.status == SessionStatus.DELIVERED


@pytest.mark.asyncio
async def test_background_task_failure_is_logged(caplog):
    core, _, _ = make_core()

    async def explode():
        raise RuntimeError("boom")

    with caplog.at_level("ERROR"):
        task = core._spawn(explode(), name="exploding")
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)

    assert core._background_tasks == set()
    assert "Background task exploding failed: boom" in caplog.text


def test_toggle_outside_event_loop_keeps_queue(caplog):
    core = SimulatorCore(clock=VirtualClock(), recipient_available=False)
    core.queue.enqueue(QueuedMessage(id="m1", config=MessageConfig(), queued_at=0.0))

    with caplog.at_level("WARNING"):
        flush = core.toggle_recipient()

    assert flush is None
    assert core.recipient_available is True
    assert [m.id for m in core.queue] == ["m1"]
    assert "1 queued email(s) wait for flush_queue()" in caplog.text

    delivered = asyncio.run(core.flush_queue())
    assert [m.id for m in delivered] == ["m1"]
    assert len(core.queue) == 0

"""
Tests for the rate-limited outbound queue.
"""

import threading
import time

from bulksms import OutboundQueue, EventChannel, EventKind, QueuedMessage, OutcomeStatus
from bulksms.exceptions import SendFailure


class RecordingSender:
    """Send primitive that records calls and concurrency."""

    def __init__(self, duration=0.0, fail_bodies=()):
        self.duration = duration
        self.fail_bodies = set(fail_bodies)
        self.sent: list[QueuedMessage] = []
        self.times: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def __call__(self, message):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.times.append(time.monotonic())
        try:
            time.sleep(self.duration)
            if message.body in self.fail_bodies:
                raise SendFailure("Modem rejected message")
            with self._lock:
                self.sent.append(message)
            return len(self.sent)
        finally:
            with self._lock:
                self.in_flight -= 1


def _outcomes(channel):
    outcomes = []
    while True:
        event = channel.get(timeout=0.01)
        if event is None:
            return outcomes
        if event.kind == EventKind.MESSAGE_PROCESSED:
            outcomes.append(event.data)


def test_fifo_order():
    sender = RecordingSender()
    queue = OutboundQueue(sender, EventChannel(), rate_limit_delay=0.0)

    for i in range(5):
        queue.submit(QueuedMessage(f"+1555000000{i}", f"msg {i}", str(i)))

    assert queue.wait_idle(timeout=2.0)
    assert [m.body for m in sender.sent] == [f"msg {i}" for i in range(5)]
    assert len(queue) == 0


def test_single_flight_under_concurrent_submits():
    sender = RecordingSender(duration=0.01)
    queue = OutboundQueue(sender, EventChannel(), rate_limit_delay=0.0)

    threads = [
        threading.Thread(
            target=queue.submit,
            args=(QueuedMessage("+15550000000", f"msg {i}"),)
        )
        for i in range(10)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert queue.wait_idle(timeout=5.0)
    assert len(sender.sent) == 10
    assert sender.max_in_flight == 1


def test_rate_limit_spacing():
    """Three messages at one second apart take at least two seconds."""
    sender = RecordingSender()
    queue = OutboundQueue(sender, EventChannel(), rate_limit_delay=1.0)

    for i in range(3):
        queue.submit(QueuedMessage("+15550000000", f"msg {i}"))

    assert queue.wait_idle(timeout=10.0)
    assert len(sender.times) == 3
    assert sender.times[2] - sender.times[0] >= 1.9
    assert sender.times[1] - sender.times[0] >= 0.95


def test_outcome_events():
    sender = RecordingSender()
    channel = EventChannel()
    queue = OutboundQueue(sender, channel, rate_limit_delay=0.0)

    queue.submit(QueuedMessage("+15551234567", "Hello", "7"))
    assert queue.wait_idle(timeout=2.0)

    outcomes = _outcomes(channel)
    assert len(outcomes) == 1
    assert outcomes[0].correlation_id == "7"
    assert outcomes[0].phone == "+15551234567"
    assert outcomes[0].outcome == OutcomeStatus.SENT
    assert outcomes[0].reference == 1


def test_failure_does_not_stop_drain():
    sender = RecordingSender(fail_bodies={"bad"})
    channel = EventChannel()
    queue = OutboundQueue(sender, channel, rate_limit_delay=0.0)

    queue.submit(QueuedMessage("+15550000001", "bad", "1"))
    queue.submit(QueuedMessage("+15550000002", "good", "2"))
    assert queue.wait_idle(timeout=2.0)

    outcomes = _outcomes(channel)
    assert [o.outcome for o in outcomes] == [OutcomeStatus.FAILED, OutcomeStatus.SENT]
    assert "Modem rejected message" in outcomes[0].error
    assert [m.body for m in sender.sent] == ["good"]


def test_unexpected_exception_reported_as_failure():
    def broken_send(message):
        raise RuntimeError("boom")

    channel = EventChannel()
    queue = OutboundQueue(broken_send, channel, rate_limit_delay=0.0)

    queue.submit(QueuedMessage("+15550000001", "hello", "1"))
    assert queue.wait_idle(timeout=2.0)

    outcomes = _outcomes(channel)
    assert outcomes[0].outcome == OutcomeStatus.FAILED
    assert outcomes[0].error == "boom"


def test_waits_until_ready():
    ready = [False]
    sender = RecordingSender()
    queue = OutboundQueue(sender, EventChannel(), rate_limit_delay=0.0, is_ready=lambda: ready[0])

    queue.submit(QueuedMessage("+15550000000", "held"))
    time.sleep(0.1)

    assert len(queue) == 1
    assert sender.sent == []
    assert queue.is_draining is False

    ready[0] = True
    queue.resume()

    assert queue.wait_idle(timeout=2.0)
    assert [m.body for m in sender.sent] == ["held"]


def test_stop_keeps_queued_messages():
    sender = RecordingSender()
    queue = OutboundQueue(sender, EventChannel(), rate_limit_delay=0.5)

    for i in range(3):
        queue.submit(QueuedMessage("+15550000000", f"msg {i}"))
    time.sleep(0.1)
    queue.stop()

    assert queue.wait_idle(timeout=2.0)
    assert len(sender.sent) == 1
    assert len(queue) == 2

    queue.resume()
    assert queue.wait_idle(timeout=5.0)
    assert len(sender.sent) == 3

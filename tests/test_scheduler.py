"""
Tests for the campaign scheduler.
"""

import time
from datetime import datetime, timedelta

import pytest
from bulksms import (
    MessageScheduler,
    EventChannel,
    EventKind,
    Contact,
    Message,
    MessageStatus,
    DeliveryStatus,
    JobState,
    personalize,
)


class FakeGateway:
    """Collects queued messages instead of sending them."""

    def __init__(self):
        self.events = EventChannel()
        self.queued = []

    def queue_message(self, message):
        self.queued.append(message)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def scheduler(storage, fake_gateway):
    scheduler_instance = MessageScheduler(storage, fake_gateway, reconcile_interval=60.0)
    yield scheduler_instance
    scheduler_instance.stop()


def _campaign(storage, message_id=1, scheduled_at=None, status=MessageStatus.SCHEDULED,
              content="Hi {name}, sale today!", list_id=10):
    return storage.add_message(Message(
        id=message_id,
        content=content,
        list_id=list_id,
        status=status,
        scheduled_at=scheduled_at
    ))


def _contacts(storage, list_id=10):
    storage.add_contact(Contact(id=1, list_id=list_id, name="Alice", phone="+15550000001"))
    storage.add_contact(Contact(id=2, list_id=list_id, name="Bob", phone="+15550000002"))


def test_personalize():
    assert personalize("Hi {name}, bye {name}", "Ann") == "Hi Ann, bye Ann"
    assert personalize("No token", "Ann") == "No token"
    assert personalize("{NAME} { name}", "Ann") == "{NAME} { name}"


class TestScheduleMessage:
    """Test explicit scheduling."""

    def test_fires_without_reconcile(self, scheduler, storage, fake_gateway, wait_until):
        _contacts(storage)
        _campaign(storage)

        scheduler.schedule_message(1, datetime.now() + timedelta(milliseconds=50))

        assert scheduler.get_job_state(1) == JobState.SCHEDULED
        assert wait_until(lambda: len(fake_gateway.queued) == 2)
        assert wait_until(lambda: scheduler.get_job_state(1) == JobState.EXECUTED)

        assert sorted(m.body for m in fake_gateway.queued) == [
            "Hi Alice, sale today!",
            "Hi Bob, sale today!",
        ]
        assert {m.correlation_id for m in fake_gateway.queued} == {"1"}
        assert scheduler.job_count() == 0

        message = storage.get_message(1)
        assert message.status == MessageStatus.SENDING
        assert message.total_recipients == 2

        deliveries = storage.get_message_deliveries(1)
        assert len(deliveries) == 2
        assert all(d.status == DeliveryStatus.PENDING for d in deliveries)
        assert {d.personalized_content for d in deliveries} == {
            "Hi Alice, sale today!",
            "Hi Bob, sale today!",
        }

    def test_past_time_runs_now(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage)

        scheduler.schedule_message(1, datetime.now() - timedelta(minutes=5))

        assert len(fake_gateway.queued) == 2
        assert scheduler.get_job_state(1) == JobState.EXECUTED

    def test_job_executed_event(self, scheduler, storage, fake_gateway, wait_event):
        _contacts(storage)
        _campaign(storage)

        scheduler.schedule_message(1, datetime.now())

        event = wait_event(fake_gateway.events, EventKind.JOB_EXECUTED)
        assert event.data == {"message_id": 1, "recipient_count": 2}

    def test_reschedule_runs_once(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage)

        scheduler.schedule_message(1, datetime.now() + timedelta(milliseconds=200))
        scheduler.schedule_message(1, datetime.now() + timedelta(milliseconds=100))

        assert scheduler.job_count() == 1
        time.sleep(0.6)

        assert len(fake_gateway.queued) == 2

    def test_timezone_aware_time(self, scheduler, storage, fake_gateway, wait_until):
        _contacts(storage)
        _campaign(storage)

        when = datetime.now().astimezone() + timedelta(milliseconds=50)
        scheduler.schedule_message(1, when)

        assert wait_until(lambda: len(fake_gateway.queued) == 2)


class TestCancel:
    """Test cancellation."""

    def test_cancel_unknown(self, scheduler):
        assert scheduler.cancel_scheduled_message(99) is False

    def test_cancel_known(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage)
        scheduler.schedule_message(1, datetime.now() + timedelta(milliseconds=100))

        assert scheduler.cancel_scheduled_message(1) is True
        time.sleep(0.3)

        assert fake_gateway.queued == []
        assert scheduler.job_count() == 0
        assert scheduler.get_job_state(1) == JobState.CANCELLED
        assert scheduler.cancel_scheduled_message(1) is False

    def test_cancel_is_stored(self, scheduler, storage):
        _campaign(storage, scheduled_at=datetime.now() + timedelta(hours=1))
        scheduler.schedule_message(1, datetime.now() + timedelta(hours=1))

        scheduler.cancel_scheduled_message(1)

        assert storage.get_message(1).status == MessageStatus.CANCELLED
        assert storage.get_scheduled_messages() == []

    def test_cancelled_job_not_rearmed_by_reconcile(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage, scheduled_at=datetime.now() + timedelta(milliseconds=200))
        scheduler.schedule_message(1, datetime.now() + timedelta(milliseconds=200))

        assert scheduler.cancel_scheduled_message(1) is True
        scheduler.reconcile()
        time.sleep(0.5)

        assert fake_gateway.queued == []
        assert scheduler.job_count() == 0
        assert scheduler.get_job_state(1) == JobState.CANCELLED

    def test_cancelled_overdue_job_not_run_by_reconcile(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage, scheduled_at=datetime.now() - timedelta(minutes=1))
        scheduler.schedule_message(1, datetime.now() + timedelta(hours=1))

        scheduler.cancel_scheduled_message(1)
        scheduler.reconcile()

        assert fake_gateway.queued == []


class TestExecution:
    """Test what happens when a job fires."""

    def test_skips_when_no_longer_scheduled(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage, status=MessageStatus.COMPLETED)

        scheduler.schedule_message(1, datetime.now())

        assert fake_gateway.queued == []
        assert scheduler.get_job_state(1) == JobState.CANCELLED
        assert storage.get_message(1).status == MessageStatus.COMPLETED

    def test_skips_missing_message(self, scheduler, fake_gateway):
        scheduler.schedule_message(404, datetime.now())

        assert fake_gateway.queued == []
        assert scheduler.get_job_state(404) == JobState.CANCELLED

    def test_excludes_opted_out_and_blacklisted(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        storage.add_contact(Contact(id=3, list_id=10, name="Cy", phone="+15550000003", opted_in=False))
        storage.add_contact(Contact(id=4, list_id=10, name="Di", phone="+15550000004", blacklisted=True))
        storage.add_contact(Contact(id=5, list_id=11, name="Ed", phone="+15550000005"))
        _campaign(storage)

        scheduler.schedule_message(1, datetime.now())

        assert sorted(m.phone for m in fake_gateway.queued) == ["+15550000001", "+15550000002"]

    def test_no_recipients_completes(self, scheduler, storage, fake_gateway):
        _campaign(storage)

        scheduler.schedule_message(1, datetime.now())

        message = storage.get_message(1)
        assert fake_gateway.queued == []
        assert message.status == MessageStatus.COMPLETED
        assert message.total_recipients == 0
        assert message.completed_at is not None
        assert scheduler.get_job_state(1) == JobState.EXECUTED

    def test_missing_list_fails(self, scheduler, storage, fake_gateway, wait_event):
        _campaign(storage, list_id=None)

        scheduler.schedule_message(1, datetime.now())

        assert scheduler.get_job_state(1) == JobState.FAILED
        assert storage.get_message(1).status == MessageStatus.FAILED
        assert storage.get_message(1).completed_at is not None
        event = wait_event(fake_gateway.events, EventKind.JOB_FAILED)
        assert event.data["message_id"] == 1

    def test_invalid_contact_is_skipped(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        storage.add_contact(Contact(id=3, list_id=10, name="Bad", phone="not-a-number"))
        _campaign(storage)

        scheduler.schedule_message(1, datetime.now())

        assert sorted(m.phone for m in fake_gateway.queued) == ["+15550000001", "+15550000002"]
        assert len(storage.get_message_deliveries(1)) == 2
        assert scheduler.get_job_state(1) == JobState.EXECUTED

        message = storage.get_message(1)
        assert message.status == MessageStatus.SENDING
        assert message.total_recipients == 2

    def test_overlong_personalized_body_is_skipped(self, scheduler, storage, fake_gateway):
        storage.add_contact(Contact(id=1, list_id=10, name="Al", phone="+15550000001"))
        storage.add_contact(Contact(id=2, list_id=10, name="B" * 30, phone="+15550000002"))
        _campaign(storage, content="{name}" + "x" * 140)

        scheduler.schedule_message(1, datetime.now())

        assert [m.phone for m in fake_gateway.queued] == ["+15550000001"]
        assert storage.get_message(1).total_recipients == 1

    def test_failed_timer_job_is_removed(self, scheduler, storage, wait_until):
        _campaign(storage, list_id=None)

        scheduler.schedule_message(1, datetime.now() + timedelta(milliseconds=50))

        assert wait_until(lambda: scheduler.get_job_state(1) == JobState.FAILED)
        assert scheduler.job_count() == 0


class TestReconcile:
    """Test the reconciliation pass."""

    def test_arms_by_horizon(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        now = datetime.now()
        _campaign(storage, message_id=1, scheduled_at=now - timedelta(minutes=1))
        _campaign(storage, message_id=2, scheduled_at=now + timedelta(hours=1))
        _campaign(storage, message_id=3, scheduled_at=now + timedelta(hours=25))

        scheduler.reconcile()

        assert {m.correlation_id for m in fake_gateway.queued} == {"1"}
        assert scheduler.get_job_state(1) == JobState.EXECUTED
        assert scheduler.get_job_state(2) == JobState.SCHEDULED
        assert scheduler.get_job_state(3) == JobState.NONE
        assert scheduler.job_count() == 1

    def test_does_not_replace_armed_timer(self, scheduler, storage):
        _campaign(storage, scheduled_at=datetime.now() + timedelta(hours=2))
        scheduler.schedule_message(1, datetime.now() + timedelta(hours=1))

        scheduler.reconcile()
        scheduler.reconcile()

        assert scheduler.job_count() == 1

    def test_skips_unscheduled_messages(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage, scheduled_at=None)

        scheduler.reconcile()

        assert fake_gateway.queued == []
        assert scheduler.job_count() == 0

    def test_start_runs_immediate_pass(self, scheduler, storage, fake_gateway, wait_until):
        _contacts(storage)
        _campaign(storage, scheduled_at=datetime.now() - timedelta(seconds=1))

        scheduler.start()

        assert wait_until(lambda: len(fake_gateway.queued) == 2)

    def test_executed_campaign_not_run_again(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage, scheduled_at=datetime.now() - timedelta(seconds=1))

        scheduler.reconcile()
        scheduler.reconcile()

        assert len(fake_gateway.queued) == 2

    def test_stop_disarms_timers(self, scheduler, storage, fake_gateway):
        _contacts(storage)
        _campaign(storage, scheduled_at=datetime.now() + timedelta(milliseconds=100))
        scheduler.reconcile()
        assert scheduler.job_count() == 1

        scheduler.stop()
        time.sleep(0.3)

        assert scheduler.job_count() == 0
        assert fake_gateway.queued == []

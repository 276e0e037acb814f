"""
Campaign scheduler.

Fires future-dated campaigns: expands the recipient list at fire time and
hands one personalized message per recipient to the gateway queue.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from .events import EventChannel, EventKind
from .storage import MessageDelivery, MessageStatus, Storage
from .types import JobState, QueuedMessage, ScheduledJob
from .exceptions import SchedulerExecutionError

logger = logging.getLogger(__name__)

NAME_TOKEN = "{name}"


def personalize(template: str, name: str) -> str:
    """Replace every literal ``{name}`` with the contact's name."""
    return template.replace(NAME_TOKEN, name)


def _seconds_until(when: datetime) -> float:
    return (when - datetime.now(when.tzinfo)).total_seconds()


class MessageScheduler:
    """
    Holds one cancellable timer per scheduled message.

    Jobs live in a table keyed by message id; ``_lock`` guards the table, so
    there is never more than one armed timer per id. A timer only executes
    its job if it is still the one in the table when it fires.

    Duplicate handling:
    - ``schedule_message`` replaces an armed timer (last writer wins)
    - ``reconcile`` never touches an id that already has a timer
    - an id that is already executing is not executed again

    The reconciliation pass runs every ``reconcile_interval`` seconds and only
    arms jobs due within ``horizon``; storage stays the source of truth, so
    timers are rebuilt after a restart.

    Example usage:

    .. code-block:: python

        scheduler = MessageScheduler(storage, gateway)
        scheduler.start()
        scheduler.schedule_message(7, datetime.now() + timedelta(hours=2))
        scheduler.cancel_scheduled_message(7)
        scheduler.stop()
    """

    def __init__(
        self,
        storage: Storage,
        gateway,
        reconcile_interval: float = 60.0,
        horizon: timedelta = timedelta(hours=24),
        events: Optional[EventChannel] = None
    ) -> None:
        """
        Initialize scheduler.

        Args:
            storage: Source of scheduled campaigns and contacts
            gateway: Anything with ``queue_message(QueuedMessage)``
            reconcile_interval: Seconds between reconciliation passes
            horizon: How far ahead reconciliation arms timers
            events: Channel for JOB_EXECUTED / JOB_FAILED (defaults to the
                    gateway's channel, if it has one)
        """
        self.storage = storage
        self.gateway = gateway
        self.reconcile_interval = reconcile_interval
        self.horizon = horizon
        self.events = events if events is not None else getattr(gateway, "events", None)

        self._jobs: dict[int, ScheduledJob] = {}
        self._states: dict[int, JobState] = {}
        self._executing: set[int] = set()
        self._lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        logger.info("Initialized MessageScheduler")

    def start(self) -> None:
        """Start periodic reconciliation, beginning with an immediate pass."""
        if self._thread and self._thread.is_alive():
            logger.warning("MessageScheduler already started")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="SchedulerThread"
        )
        self._thread.start()
        logger.info(f"Started scheduler (interval={self.reconcile_interval}s)")

    def stop(self) -> None:
        """Stop reconciliation and disarm every timer."""
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5.0)
        self._thread = None

        with self._lock:
            for job in self._jobs.values():
                if job.timer:
                    job.timer.cancel()
                self._states.pop(job.message_id, None)
            count = len(self._jobs)
            self._jobs.clear()

        logger.info(f"Stopped scheduler, disarmed {count} job(s)")

    def _run(self) -> None:
        self.reconcile()
        while not self._stop_event.wait(self.reconcile_interval):
            self.reconcile()

    def reconcile(self) -> None:
        """
        Arm timers for stored campaigns that do not have one yet.

        Overdue campaigns run now, campaigns within the horizon get a timer
        for their exact delay, later ones wait for a future pass.
        """
        try:
            messages = self.storage.get_scheduled_messages()
        except Exception as e:
            logger.error(f"Failed to load scheduled messages: {e}", exc_info=True)
            return

        horizon_seconds = self.horizon.total_seconds()
        due: list[int] = []

        for message in messages:
            if message.scheduled_at is None:
                continue
            with self._lock:
                if message.id in self._jobs or message.id in self._executing:
                    continue

            delay = _seconds_until(message.scheduled_at)
            if delay <= 0:
                due.append(message.id)
            elif delay <= horizon_seconds:
                self._arm(message.id, message.scheduled_at, delay, replace=False)
            else:
                logger.debug(f"Message {message.id} is beyond the horizon, not armed yet")

        for message_id in due:
            self._execute(message_id)

    def schedule_message(self, message_id: int, scheduled_at: datetime) -> None:
        """
        Schedule (or reschedule) a campaign.

        A due time in the past runs the campaign now. Otherwise a timer is
        armed for the exact delay, replacing any timer the id already has.

        Args:
            message_id: Campaign id in storage
            scheduled_at: When to send
        """
        delay = _seconds_until(scheduled_at)
        if delay <= 0:
            logger.info(f"Message {message_id} is already due, executing now")
            self._execute(message_id)
            return

        self._arm(message_id, scheduled_at, delay, replace=True)

    def cancel_scheduled_message(self, message_id: int) -> bool:
        """
        Disarm a campaign's timer and mark it cancelled in storage.

        The stored status moves from ``scheduled`` to ``cancelled`` so later
        reconciliation passes do not arm it again. Has no effect once the
        campaign has started executing.

        Returns:
            True if an armed timer was removed
        """
        with self._lock:
            job = self._jobs.pop(message_id, None)
            if job is None:
                return False
            if job.timer:
                job.timer.cancel()
            self._states[message_id] = JobState.CANCELLED

        try:
            message = self.storage.get_message(message_id)
            if message is not None and message.status == MessageStatus.SCHEDULED:
                self.storage.update_message(message_id, status=MessageStatus.CANCELLED)
        except Exception as e:
            logger.error(f"Could not mark message {message_id} as cancelled: {e}")

        logger.info(f"Cancelled scheduled message {message_id}")
        return True

    def job_count(self) -> int:
        """Number of armed timers."""
        with self._lock:
            return len(self._jobs)

    def get_job_state(self, message_id: int) -> JobState:
        """Last known state of a campaign's job."""
        with self._lock:
            return self._states.get(message_id, JobState.NONE)

    def _arm(self, message_id: int, fire_at: datetime, delay: float, replace: bool) -> bool:
        job = ScheduledJob(message_id=message_id, fire_at=fire_at)
        timer = threading.Timer(delay, self._fire, args=(job,))
        timer.daemon = True
        job.timer = timer

        with self._lock:
            existing = self._jobs.get(message_id)
            if existing is not None:
                if not replace:
                    return False
                if existing.timer:
                    existing.timer.cancel()
                logger.info(f"Rescheduling message {message_id}")
            self._jobs[message_id] = job
            self._states[message_id] = JobState.SCHEDULED
            timer.start()

        logger.info(f"Armed message {message_id} to fire in {delay:.1f}s")
        return True

    def _fire(self, job: ScheduledJob) -> None:
        self._execute(job.message_id, job)

    def _claim(self, message_id: int, job: Optional[ScheduledJob]) -> bool:
        """Take the job out of the table and mark it executing."""
        with self._lock:
            current = self._jobs.get(message_id)
            if job is not None and current is not job:
                return False
            if message_id in self._executing:
                return False
            if current is not None and current.timer:
                current.timer.cancel()
            self._jobs.pop(message_id, None)
            self._executing.add(message_id)
            self._states[message_id] = JobState.EXECUTING
            return True

    def _execute(self, message_id: int, job: Optional[ScheduledJob] = None) -> None:
        if not self._claim(message_id, job):
            logger.debug(f"Message {message_id} was replaced, cancelled or is already executing")
            return

        state = JobState.FAILED
        try:
            state = self._run_job(message_id)
        except Exception as e:
            error = SchedulerExecutionError(
                f"Scheduled message {message_id} failed: {e}",
                message_id=message_id
            )
            logger.error(str(error), exc_info=True)
            self._mark_failed(message_id)
            if self.events is not None:
                self.events.publish(EventKind.JOB_FAILED, {"message_id": message_id, "error": str(e)})
        finally:
            with self._lock:
                self._executing.discard(message_id)
                self._states[message_id] = state

    def _run_job(self, message_id: int) -> JobState:
        message = self.storage.get_message(message_id)
        if message is None or message.status != MessageStatus.SCHEDULED:
            logger.info(f"Message {message_id} is no longer scheduled, skipping")
            return JobState.CANCELLED

        if message.list_id is None:
            raise SchedulerExecutionError(f"Message {message_id} has no contact list", message_id=message_id)

        self.storage.update_message(message_id, status=MessageStatus.PENDING)

        contacts = self.storage.get_opted_in_contacts(message.list_id)

        outgoing = []
        for contact in contacts:
            try:
                queued = QueuedMessage(
                    phone=contact.phone,
                    body=personalize(message.content, contact.name),
                    correlation_id=str(message_id)
                )
            except ValueError as e:
                logger.warning(f"Skipping contact {contact.id} of message {message_id}: {e}")
                continue
            outgoing.append((contact, queued))

        for contact, queued in outgoing:
            self.storage.create_message_delivery(MessageDelivery(
                message_id=message_id,
                contact_id=contact.id,
                phone=queued.phone,
                personalized_content=queued.body
            ))

        if outgoing:
            self.storage.update_message(
                message_id,
                status=MessageStatus.SENDING,
                total_recipients=len(outgoing)
            )
        else:
            self.storage.update_message(
                message_id,
                status=MessageStatus.COMPLETED,
                total_recipients=0,
                completed_at=datetime.now()
            )

        for _, queued in outgoing:
            self.gateway.queue_message(queued)

        logger.info(f"Executed scheduled message {message_id} for {len(outgoing)} recipient(s)")
        if self.events is not None:
            self.events.publish(
                EventKind.JOB_EXECUTED,
                {"message_id": message_id, "recipient_count": len(outgoing)}
            )
        return JobState.EXECUTED

    def _mark_failed(self, message_id: int) -> None:
        try:
            self.storage.update_message(
                message_id,
                status=MessageStatus.FAILED,
                completed_at=datetime.now()
            )
        except Exception as e:
            logger.error(f"Could not mark message {message_id} as failed: {e}")

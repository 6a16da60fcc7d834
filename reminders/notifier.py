"""Periodic due-date reminders.

Each sweep reads the loans that fall due within the reminder window and are
still out and unnotified, then handles every loan on its own: the reminder is
dispatched outside any transaction and only a successful dispatch flips the
loan's ``notified`` flag. A crash between the two can repeat a reminder on the
next sweep, never lose one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from common.exceptions import DatabaseError, NotificationDispatchError
from lending import crud
from lending.config import REMINDER_INTERVAL_SECONDS, REMINDER_WINDOW_HOURS
from lending.models import utcnow
from lending.schemas import DueDateReminder
from reminders.messaging import NotificationSender

logger = logging.getLogger(__name__)

REMINDER_SUBJECT = "Reminder: Return Your Borrowed Book"


def reminder_body(reminder: DueDateReminder, now: datetime) -> str:
    if reminder.due_date < now:
        return (
            f"Dear {reminder.username}, the book \"{reminder.book_title}\" was due "
            f"on {reminder.due_date:%Y-%m-%d %H:%M} UTC and is now overdue. "
            "Please return it as soon as possible to limit your late fine. Thank you!"
        )
    return (
        f"Dear {reminder.username}, please return the book \"{reminder.book_title}\" "
        f"by {reminder.due_date:%Y-%m-%d %H:%M} UTC. You have less than one day left. "
        "Thank you!"
    )


@dataclass
class SweepResult:
    notified: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)


class DueDateNotifier:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        sender: NotificationSender,
        window: timedelta = timedelta(hours=REMINDER_WINDOW_HOURS),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.window = window
        self.clock = clock

    def pending_reminders(self, now: datetime) -> List[DueDateReminder]:
        with self.session_factory() as db:
            loans = crud.get_loans_due_for_reminder(db, now + self.window)
            return [
                DueDateReminder(
                    loan_id=loan.id,
                    email=loan.user.email,
                    username=loan.user.username,
                    book_title=loan.book.title,
                    due_date=loan.due_date,
                )
                for loan in loans
            ]

    async def remind(self, reminder: DueDateReminder, result: SweepResult, now: datetime):
        try:
            await self.sender.send(reminder.email, REMINDER_SUBJECT, reminder_body(reminder, now))
        except NotificationDispatchError as e:
            logger.error(f"Reminder for loan {reminder.loan_id} not sent: {e}")
            result.failed.append(reminder.loan_id)
            return
        except Exception as e:
            logger.error(f"Unexpected error sending reminder for loan {reminder.loan_id}: {e}")
            result.failed.append(reminder.loan_id)
            return

        try:
            with self.session_factory() as db:
                marked = crud.mark_loan_notified(db, reminder.loan_id)
        except DatabaseError as e:
            logger.error(f"Reminder for loan {reminder.loan_id} sent but not recorded: {e}")
            result.failed.append(reminder.loan_id)
            return

        if marked:
            logger.info(f"Reminder sent to {reminder.email} for loan {reminder.loan_id}")
            result.notified.append(reminder.loan_id)
        else:
            # Returned between selection and marking
            result.skipped.append(reminder.loan_id)

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or self.clock()
        logger.info("Checking for due books...")
        result = SweepResult()
        for reminder in self.pending_reminders(now):
            await self.remind(reminder, result, now)
        logger.info(
            f"Sweep done: {len(result.notified)} notified, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    async def run(self, interval: float = REMINDER_INTERVAL_SECONDS):
        logger.info(f"Due-date notifier started, sweeping every {interval}s")
        while True:
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error in due-date sweep: {e}")
            await asyncio.sleep(interval)

import asyncio
import contextlib
import logging
from fastapi import FastAPI

from lending.config import REMINDER_INTERVAL_SECONDS, REMINDER_QUEUE
from lending.storage import SessionLocal
from reminders.messaging import RabbitMQManager, RabbitMQNotificationSender
from reminders.notifier import DueDateNotifier

logger = logging.getLogger(__name__)


async def setup_messaging(app: FastAPI):
    rabbitmq_manager = RabbitMQManager()
    await rabbitmq_manager.connect()
    await rabbitmq_manager.setup_queue(REMINDER_QUEUE)
    app.state.rabbitmq_manager = rabbitmq_manager

    notifier = DueDateNotifier(
        SessionLocal,
        RabbitMQNotificationSender(rabbitmq_manager.channel, REMINDER_QUEUE),
    )
    app.state.notifier_task = asyncio.create_task(
        notifier.run(REMINDER_INTERVAL_SECONDS)
    )
    logger.info("Notification job started")


async def cleanup_messaging(app: FastAPI):
    task = app.state.notifier_task
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    await app.state.rabbitmq_manager.close()

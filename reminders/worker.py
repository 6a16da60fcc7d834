import asyncio
import logging

from lending.config import REMINDER_INTERVAL_SECONDS, REMINDER_QUEUE
from lending.storage import SessionLocal
from reminders.messaging import RabbitMQManager, RabbitMQNotificationSender
from reminders.notifier import DueDateNotifier

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main():
    manager = RabbitMQManager()
    await manager.connect()
    await manager.setup_queue(REMINDER_QUEUE)
    notifier = DueDateNotifier(
        SessionLocal, RabbitMQNotificationSender(manager.channel, REMINDER_QUEUE)
    )
    try:
        await notifier.run(REMINDER_INTERVAL_SECONDS)
    finally:
        await manager.close()


if __name__ == "__main__":
    asyncio.run(main())

import logging
from typing import Protocol
import aio_pika

from common.exceptions import NotificationDispatchError
from lending.config import RABBIT_MQ_CONN_STR, REMINDER_QUEUE
from lending.schemas import custom_json_dumps

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> None:
        """Deliver one message or raise NotificationDispatchError."""


class RabbitMQManager:
    def __init__(self, conn_str: str = RABBIT_MQ_CONN_STR):
        self.conn_str = conn_str
        self.connection = None
        self.channel = None

    async def connect(self):
        logger.info("Initializing RabbitMQ connection")
        try:
            self.connection = await aio_pika.connect_robust(self.conn_str)
            self.channel = await self.connection.channel()
            logger.info("RabbitMQ connection established successfully")
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            raise

    async def close(self):
        if self.connection:
            await self.connection.close()
            logger.info("RabbitMQ connection closed")

    async def setup_queue(self, queue_name: str):
        await self.channel.declare_queue(queue_name, durable=True)
        logger.info(f"Queue '{queue_name}' set up successfully")


class RabbitMQNotificationSender:
    """Hands reminders to the mail relay through a durable queue."""

    def __init__(self, channel, queue_name: str = REMINDER_QUEUE):
        self.channel = channel
        self.queue_name = queue_name

    async def send(self, recipient: str, subject: str, body: str) -> None:
        message = custom_json_dumps({"to": recipient, "subject": subject, "body": body})
        try:
            await self.channel.default_exchange.publish(
                aio_pika.Message(
                    body=message.encode(),
                    content_type="application/json",
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                ),
                routing_key=self.queue_name,
            )
        except Exception as e:
            raise NotificationDispatchError(recipient, str(e)) from e
        logger.info(f"Message published to queue: {self.queue_name}")

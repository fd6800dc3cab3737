import logging
import time
from typing import Any, List
from uuid import uuid4

import pika
from fastapi.concurrency import run_in_threadpool
from pika.exceptions import AMQPError

from app.application.interfaces import MessageQueueInterface
from app.services.errors import DispatchError

logger = logging.getLogger(__name__)


class RabbitMQAdapter(MessageQueueInterface):
    """RabbitMQ adapter implementation; addresses are queue names"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5672,
        username: str = "guest",
        password: str = "guest",
    ):
        self.credentials = pika.PlainCredentials(username, password)
        self.connection_params = pika.ConnectionParameters(
            host=host,
            port=port,
            credentials=self.credentials,
        )

    def _get_connection(self):
        """Get a connection to RabbitMQ"""
        return pika.BlockingConnection(self.connection_params)

    def _publish_sync(self, queue_name: str, body: str) -> str:
        message_id = uuid4().hex
        connection = self._get_connection()
        try:
            channel = connection.channel()

            # Declare queue if it doesn't exist
            channel.queue_declare(queue=queue_name, durable=True)

            channel.basic_publish(
                exchange="",
                routing_key=queue_name,
                body=body,
                properties=pika.BasicProperties(
                    content_type="application/json",
                    message_id=message_id,
                    delivery_mode=2,  # Make message persistent
                ),
            )
        finally:
            connection.close()
        return message_id

    def _receive_sync(
        self, queue_name: str, max_messages: int, wait_seconds: int
    ) -> List[dict[str, Any]]:
        deadline = time.monotonic() + wait_seconds
        messages: List[dict[str, Any]] = []
        connection = self._get_connection()
        try:
            channel = connection.channel()
            channel.queue_declare(queue=queue_name, durable=True)
            while len(messages) < max_messages:
                # Delivery tags are channel-scoped, so fetched messages are acked on read.
                method_frame, properties, body = channel.basic_get(
                    queue=queue_name,
                    auto_ack=True,
                )
                if method_frame is None:
                    if messages or time.monotonic() >= deadline:
                        break
                    connection.sleep(1)
                    continue
                messages.append(
                    {
                        "messageId": getattr(properties, "message_id", None)
                        or str(method_frame.delivery_tag),
                        "receipt": str(method_frame.delivery_tag),
                        "body": body.decode("utf-8"),
                    }
                )
        finally:
            connection.close()
        return messages

    def _check_sync(self, queue_name: str) -> None:
        connection = self._get_connection()
        try:
            channel = connection.channel()
            channel.queue_declare(queue=queue_name, durable=True, passive=True)
        finally:
            connection.close()

    async def publish(self, address: str, body: str) -> str:
        try:
            return await run_in_threadpool(self._publish_sync, address, body)
        except AMQPError as exc:
            raise DispatchError(f"Failed to publish message to RabbitMQ: {exc}") from exc

    async def receive(
        self, address: str, max_messages: int, wait_seconds: int
    ) -> List[dict[str, Any]]:
        try:
            return await run_in_threadpool(
                self._receive_sync, address, max_messages, wait_seconds
            )
        except AMQPError as exc:
            raise DispatchError(f"Failed to consume from RabbitMQ: {exc}") from exc

    async def acknowledge(self, address: str, receipt: str) -> None:
        logger.debug("RabbitMQ message %s on %s was acknowledged on receive", receipt, address)

    async def check(self, address: str) -> None:
        try:
            await run_in_threadpool(self._check_sync, address)
        except AMQPError as exc:
            raise DispatchError(f"RabbitMQ queue unreachable: {exc}") from exc

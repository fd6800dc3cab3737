import logging
from typing import Any, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from app.application.interfaces import MessageQueueInterface
from app.services.aws import create_boto3_client
from app.services.errors import DispatchError

logger = logging.getLogger(__name__)


class SqsQueueAdapter(MessageQueueInterface):
    """Amazon SQS adapter implementation; addresses are queue URLs"""

    def __init__(self, region: Optional[str] = None, client: Any = None):
        self._client = client or create_boto3_client("sqs", region_name=region)

    async def publish(self, address: str, body: str) -> str:
        try:
            response = await run_in_threadpool(
                self._client.send_message,
                QueueUrl=address,
                MessageBody=body,
            )
        except (BotoCoreError, ClientError) as exc:
            raise DispatchError(f"Failed to send message to SQS: {exc}") from exc
        return response["MessageId"]

    async def receive(
        self, address: str, max_messages: int, wait_seconds: int
    ) -> List[dict[str, Any]]:
        try:
            response = await run_in_threadpool(
                self._client.receive_message,
                QueueUrl=address,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
                MessageAttributeNames=["All"],
            )
        except (BotoCoreError, ClientError) as exc:
            raise DispatchError(f"Failed to receive messages from SQS: {exc}") from exc

        return [
            {
                "messageId": message["MessageId"],
                "receipt": message["ReceiptHandle"],
                "body": message["Body"],
            }
            for message in response.get("Messages", [])
        ]

    async def acknowledge(self, address: str, receipt: str) -> None:
        try:
            await run_in_threadpool(
                self._client.delete_message,
                QueueUrl=address,
                ReceiptHandle=receipt,
            )
        except (BotoCoreError, ClientError) as exc:
            raise DispatchError(f"Failed to delete SQS message: {exc}") from exc

    async def check(self, address: str) -> None:
        try:
            await run_in_threadpool(
                self._client.get_queue_attributes,
                QueueUrl=address,
                AttributeNames=["QueueArn"],
            )
        except (BotoCoreError, ClientError) as exc:
            raise DispatchError(f"SQS queue unreachable: {exc}") from exc

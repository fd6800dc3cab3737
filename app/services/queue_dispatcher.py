"""Publish job envelopes to worker channels and poll them back."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from app.application.interfaces import MessageQueueInterface
from app.domain.models import JobRecord
from app.models.base import utcnow
from app.models.job import JobType
from app.services.errors import ConfigurationError, DispatchError

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "1.0"
MAX_RECEIVE_MESSAGES = 10
MAX_WAIT_SECONDS = 20


def _clamp(value: int, lower: int, upper: int) -> int:
    return min(max(lower, value), upper)


class QueueDispatcher:
    """Route jobs to the channel named by their job type.

    ``channels`` maps each job type value to a queue address; ``None``
    leaves the channel unconfigured.
    """

    def __init__(
        self,
        backend: MessageQueueInterface,
        channels: Mapping[str, Optional[str]],
    ) -> None:
        self._backend = backend
        self._channels = {
            job_type.value: channels.get(job_type.value) or None for job_type in JobType
        }

    def address_for(self, job_type: JobType | str) -> str:
        queue_type = JobType(job_type).value
        address = self._channels.get(queue_type)
        if not address:
            raise ConfigurationError(
                f"Queue address not configured for {queue_type}; "
                f"set QUEUE_{queue_type.upper()}_URL"
            )
        return address

    @staticmethod
    def build_envelope(job: JobRecord, fields: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        envelope: dict[str, Any] = {
            "jobId": job.id,
            "presentationId": job.presentation_id,
            "metadata": job.metadata or {},
        }
        envelope.update({key: value for key, value in (fields or {}).items() if value is not None})
        envelope.update(
            {
                "queueType": job.job_type.value,
                "sentAt": utcnow().isoformat() + "Z",
                "version": ENVELOPE_VERSION,
            }
        )
        return envelope

    async def dispatch(self, job: JobRecord, fields: Optional[dict[str, Any]] = None) -> str:
        """Publish ``job`` and return the transport's message id."""

        address = self.address_for(job.job_type)
        envelope = self.build_envelope(job, fields)
        try:
            message_id = await self._backend.publish(address, json.dumps(envelope, default=str))
        except DispatchError:
            raise
        except Exception as exc:
            raise DispatchError(
                f"Failed to send message to {job.job_type.value} queue: {exc}"
            ) from exc

        logger.info(
            "Message %s sent to %s queue for job %s (presentation %s)",
            message_id,
            job.job_type.value,
            job.id,
            job.presentation_id,
        )
        return message_id

    async def receive(
        self,
        job_type: JobType | str,
        max_messages: int = 1,
        wait_seconds: int = 20,
    ) -> list[dict[str, Any]]:
        """Poll a channel; bodies are decoded from JSON when possible."""

        address = self.address_for(job_type)
        messages = await self._backend.receive(
            address,
            _clamp(max_messages, 1, MAX_RECEIVE_MESSAGES),
            _clamp(wait_seconds, 0, MAX_WAIT_SECONDS),
        )

        decoded = []
        for message in messages:
            body = message.get("body")
            try:
                body = json.loads(body) if isinstance(body, (str, bytes)) else body
            except ValueError:
                logger.warning("Message %s carries a non-JSON body", message.get("messageId"))
            decoded.append({**message, "body": body})
        return decoded

    async def acknowledge(self, job_type: JobType | str, receipt: str) -> None:
        await self._backend.acknowledge(self.address_for(job_type), receipt)

    async def check(self, job_type: JobType | str) -> dict[str, Any]:
        """Probe a channel; never raises."""

        queue_type = JobType(job_type).value
        try:
            await self._backend.check(self.address_for(queue_type))
        except DispatchError as exc:
            return {"success": False, "queueType": queue_type, "error": exc.detail}
        except Exception as exc:
            logger.warning("Queue check for %s failed: %s", queue_type, exc)
            return {"success": False, "queueType": queue_type, "error": str(exc)}
        return {"success": True, "queueType": queue_type}

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            queue_type: {"configured": bool(address)}
            for queue_type, address in self._channels.items()
        }


__all__ = ["QueueDispatcher", "ENVELOPE_VERSION"]

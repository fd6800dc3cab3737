from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Tuple

from app.domain.models import DispatchContext, JobRecord, JobStatistics
from app.models.job import JobType
from app.models.presentation import PresentationStatus


class JobRepositoryInterface(ABC):
    """Persistence contract for pipeline jobs"""

    @abstractmethod
    async def create(
        self,
        presentation_id: int,
        job_type: JobType,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Tuple[JobRecord, bool]:
        ...

    @abstractmethod
    async def get(self, job_id: int) -> Optional[JobRecord]:
        ...

    @abstractmethod
    async def set_message_id(self, job_id: int, message_id: str) -> JobRecord:
        ...

    @abstractmethod
    async def mark_running(self, job_id: int, worker_name: str) -> JobRecord:
        ...

    @abstractmethod
    async def mark_completed(
        self, job_id: int, result: Optional[dict[str, Any]] = None
    ) -> Tuple[JobRecord, bool]:
        ...

    @abstractmethod
    async def mark_failed(self, job_id: int, error_message: str) -> JobRecord:
        ...

    @abstractmethod
    async def reopen(
        self,
        job_id: int,
        reset_retries: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> JobRecord:
        ...

    @abstractmethod
    async def requeue_if_running(self, job_id: int, note: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    async def by_presentation(
        self, presentation_id: int, job_type: Optional[JobType] = None
    ) -> List[JobRecord]:
        ...

    @abstractmethod
    async def history(self, presentation_id: int) -> List[JobRecord]:
        ...

    @abstractmethod
    async def pending(
        self, job_type: Optional[JobType] = None, limit: int = 50
    ) -> List[JobRecord]:
        ...

    @abstractmethod
    async def running(self, job_type: Optional[JobType] = None) -> List[JobRecord]:
        ...

    @abstractmethod
    async def stuck(self, cutoff: datetime) -> List[JobRecord]:
        ...

    @abstractmethod
    async def statistics(self, presentation_id: Optional[int] = None) -> JobStatistics:
        ...

    @abstractmethod
    async def purge_terminal(self, cutoff: datetime) -> int:
        ...


class PresentationRepositoryInterface(ABC):
    """Persistence contract for the presentation aggregate root"""

    @abstractmethod
    async def exists(self, presentation_id: int) -> bool:
        ...

    @abstractmethod
    async def get_status(self, presentation_id: int) -> Optional[PresentationStatus]:
        ...

    @abstractmethod
    async def set_status(
        self,
        presentation_id: int,
        status: PresentationStatus,
        *,
        submitted: bool = False,
        completed: bool = False,
    ) -> None:
        ...

    @abstractmethod
    async def unprocessed_slide_ids(self, presentation_id: int) -> List[int]:
        ...

    @abstractmethod
    async def dispatch_context(
        self,
        presentation_id: int,
        job_type: JobType,
        slide_ids: Optional[List[int]] = None,
    ) -> DispatchContext:
        ...


class MessageQueueInterface(ABC):
    """Transport contract for worker channels"""

    @abstractmethod
    async def publish(self, address: str, body: str) -> str:
        """Send ``body`` and return the transport's message id."""

    @abstractmethod
    async def receive(
        self, address: str, max_messages: int, wait_seconds: int
    ) -> List[dict[str, Any]]:
        """Return messages as ``{"messageId", "receipt", "body"}`` dicts."""

    @abstractmethod
    async def acknowledge(self, address: str, receipt: str) -> None:
        ...

    @abstractmethod
    async def check(self, address: str) -> None:
        """Raise when the channel is unreachable."""

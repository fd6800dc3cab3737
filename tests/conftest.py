"""Shared fixtures: a throwaway SQLite database and an in-memory queue."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
import sys
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from app.application.interfaces import MessageQueueInterface  # noqa: E402
from app.config.dependencies import build_pipeline_services  # noqa: E402
from app.config.settings import (  # noqa: E402
    PipelineConfig,
    QueueConfig,
    Settings,
    WebhookConfig,
)
from app.database import build_engine  # noqa: E402
from app.models.course import Course, Enrollment, EnrollmentStatus  # noqa: E402
from app.models.presentation import AudioRecord, Presentation, Slide  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402
from app.services.errors import DispatchError  # noqa: E402
from app.utils import create_access_token  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"


class FakeQueueBackend(MessageQueueInterface):
    """Records published envelopes instead of talking to a broker."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []
        self.acknowledged: list[str] = []
        self.fail = False

    async def publish(self, address: str, body: str) -> str:
        if self.fail:
            raise DispatchError("Queue unavailable")
        self.published.append((address, json.loads(body)))
        return f"msg-{len(self.published)}"

    async def receive(
        self, address: str, max_messages: int, wait_seconds: int
    ) -> list[dict[str, Any]]:
        messages = [
            {
                "messageId": f"msg-{index + 1}",
                "receipt": f"receipt-{index + 1}",
                "body": json.dumps(envelope),
            }
            for index, (target, envelope) in enumerate(self.published)
            if target == address
        ]
        return messages[:max_messages]

    async def acknowledge(self, address: str, receipt: str) -> None:
        self.acknowledged.append(receipt)

    async def check(self, address: str) -> None:
        if self.fail:
            raise DispatchError("Queue unavailable")

    def envelopes(self, queue_type: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            envelope
            for _, envelope in self.published
            if queue_type is None or envelope["queueType"] == queue_type
        ]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def queue() -> FakeQueueBackend:
    return FakeQueueBackend()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        log_file=str(tmp_path / "app.log"),
        pipeline_log_file=str(tmp_path / "pipeline.log"),
        webhook_log_file=str(tmp_path / "webhooks.log"),
        queue=QueueConfig(
            backend="sqs",
            asr_url="https://sqs.test/asr",
            analysis_url="https://sqs.test/analysis",
            report_url="https://sqs.test/report",
            slides_url="https://sqs.test/slides",
        ),
        webhook=WebhookConfig(secret=SecretStr(WEBHOOK_SECRET)),
        pipeline=PipelineConfig(max_retry=3, stuck_after_hours=2, cleanup_after_days=30),
    )


@pytest.fixture
def services(tmp_path: Path, settings: Settings, queue: FakeQueueBackend):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}", echo=False)
    services = build_pipeline_services(settings, engine=engine, queue_backend=queue)
    run(services.init_models())
    yield services
    run(services.dispose())


async def _seed(services, slide_count: int, student_count: int) -> SimpleNamespace:
    async with services.session_factory.begin() as session:
        admin = User(email="admin@example.edu", full_name="Ada Admin", role=UserRole.ADMIN)
        instructor = User(
            email="teacher@example.edu",
            full_name="Ivan Instructor",
            role=UserRole.INSTRUCTOR,
        )
        students = [
            User(
                email=f"student{index}@example.edu",
                full_name=f"Student {index}",
                role=UserRole.STUDENT,
            )
            for index in range(1, student_count + 1)
        ]
        course = Course(code="COMM101", title="Public Speaking")
        session.add_all([admin, instructor, *students, course])
        await session.flush()

        session.add_all(
            [
                Enrollment(
                    student_id=student.id,
                    course_id=course.id,
                    status=EnrollmentStatus.ENROLLED,
                )
                for student in students
            ]
        )
        presentation = Presentation(
            student_id=students[0].id,
            course_id=course.id,
            title="Renewable energy in Vietnam",
        )
        session.add(presentation)
        await session.flush()

        session.add(
            AudioRecord(
                presentation_id=presentation.id,
                file_path="s3://review-bucket/audio/talk.mp3",
                file_format="mp3",
            )
        )
        slides = [
            Slide(
                presentation_id=presentation.id,
                slide_number=number,
                file_path=f"slides/deck-{number}.pdf",
                file_name=f"deck-{number}.pdf",
            )
            for number in range(1, slide_count + 1)
        ]
        session.add_all(slides)
        await session.flush()

        return SimpleNamespace(
            admin_id=admin.id,
            instructor_id=instructor.id,
            student_ids=[student.id for student in students],
            course_id=course.id,
            presentation_id=presentation.id,
            slide_ids=[slide.id for slide in slides],
        )


@pytest.fixture
def seeded(services) -> SimpleNamespace:
    return run(_seed(services, slide_count=2, student_count=3))


@pytest.fixture
def client(services):
    from app.main import create_app

    app = create_app(services)
    with TestClient(app) as test_client:
        yield test_client


def bearer(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


def webhook_headers(secret: str = WEBHOOK_SECRET) -> dict[str, str]:
    return {"Authorization": f"Bearer {secret}"}

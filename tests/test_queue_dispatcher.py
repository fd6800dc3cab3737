"""Envelope construction and channel routing."""

from __future__ import annotations

import pytest

from app.domain.models import JobRecord
from app.models.job import JobStatus, JobType
from app.services.errors import ConfigurationError, DispatchError
from app.services.queue_dispatcher import QueueDispatcher

from conftest import FakeQueueBackend, run

CHANNELS = {"asr": "queue://asr", "analysis": "queue://analysis", "report": None}


class RecordingBackend(FakeQueueBackend):
    def __init__(self) -> None:
        super().__init__()
        self.receive_calls: list[tuple[str, int, int]] = []
        self.inbox: list[dict] = []

    async def receive(self, address, max_messages, wait_seconds):
        self.receive_calls.append((address, max_messages, wait_seconds))
        return self.inbox


class ExplodingBackend(FakeQueueBackend):
    async def publish(self, address, body):
        raise RuntimeError("connection reset")

    async def check(self, address):
        raise RuntimeError("connection reset")


def make_job(job_type=JobType.ASR, **overrides) -> JobRecord:
    values = {
        "id": 11,
        "presentation_id": 5,
        "job_type": job_type,
        "status": JobStatus.QUEUED,
        "metadata": {"kind": job_type.value},
    }
    values.update(overrides)
    return JobRecord(**values)


def test_envelope_carries_routing_fields_and_drops_missing_ones():
    envelope = QueueDispatcher.build_envelope(
        make_job(JobType.ANALYSIS),
        {"transcriptId": None, "slideUrls": ["https://cdn.test/1.pdf"]},
    )

    assert envelope["jobId"] == 11
    assert envelope["presentationId"] == 5
    assert envelope["queueType"] == "analysis"
    assert envelope["version"] == "1.0"
    assert envelope["metadata"] == {"kind": "analysis"}
    assert envelope["slideUrls"] == ["https://cdn.test/1.pdf"]
    assert "transcriptId" not in envelope


def test_dispatch_publishes_to_job_type_channel():
    backend = FakeQueueBackend()
    dispatcher = QueueDispatcher(backend, CHANNELS)

    message_id = run(dispatcher.dispatch(make_job(), {"audioUrl": "https://cdn.test/a.mp3"}))

    assert message_id == "msg-1"
    (address, envelope), = backend.published
    assert address == "queue://asr"
    assert envelope["audioUrl"] == "https://cdn.test/a.mp3"


def test_unconfigured_channel_raises_configuration_error():
    dispatcher = QueueDispatcher(FakeQueueBackend(), CHANNELS)

    with pytest.raises(ConfigurationError) as excinfo:
        run(dispatcher.dispatch(make_job(JobType.REPORT)))

    assert isinstance(excinfo.value, DispatchError)
    assert "QUEUE_REPORT_URL" in excinfo.value.detail
    assert dispatcher.status()["report"] == {"configured": False}
    assert dispatcher.status()["slides"] == {"configured": False}
    assert dispatcher.status()["asr"] == {"configured": True}


def test_transport_errors_become_dispatch_errors():
    dispatcher = QueueDispatcher(ExplodingBackend(), CHANNELS)

    with pytest.raises(DispatchError) as excinfo:
        run(dispatcher.dispatch(make_job()))

    assert "connection reset" in excinfo.value.detail


def test_receive_clamps_limits_and_decodes_bodies():
    backend = RecordingBackend()
    backend.inbox = [
        {"messageId": "m1", "receipt": "r1", "body": '{"jobId": 3}'},
        {"messageId": "m2", "receipt": "r2", "body": "not json"},
    ]
    dispatcher = QueueDispatcher(backend, CHANNELS)

    messages = run(dispatcher.receive("asr", max_messages=50, wait_seconds=90))

    assert backend.receive_calls == [("queue://asr", 10, 20)]
    assert messages[0]["body"] == {"jobId": 3}
    assert messages[1]["body"] == "not json"


def test_check_never_raises():
    healthy = QueueDispatcher(FakeQueueBackend(), CHANNELS)
    broken = QueueDispatcher(ExplodingBackend(), CHANNELS)

    assert run(healthy.check("asr")) == {"success": True, "queueType": "asr"}
    result = run(broken.check("asr"))
    assert result["success"] is False
    assert "connection reset" in result["error"]
    unconfigured = run(healthy.check("report"))
    assert unconfigured["success"] is False


def test_acknowledge_uses_channel_address():
    backend = FakeQueueBackend()
    dispatcher = QueueDispatcher(backend, CHANNELS)

    run(dispatcher.acknowledge("analysis", "receipt-9"))

    assert backend.acknowledged == ["receipt-9"]

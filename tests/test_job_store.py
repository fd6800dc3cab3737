"""Job store state transitions against a real SQLite database."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from app.database import session_scope
from app.models.base import utcnow
from app.models.job import Job, JobStatus, JobType
from app.models.presentation import Presentation
from app.services.errors import ConflictError, NotFoundError

from conftest import run


def test_create_returns_existing_active_job(services, seeded):
    jobs = services.jobs
    pid = seeded.presentation_id

    first, created = run(jobs.create(pid, JobType.ASR, {"kind": "asr"}))
    second, created_again = run(jobs.create(pid, JobType.ASR, {"kind": "asr"}))

    assert created is True
    assert created_again is False
    assert second.id == first.id
    assert first.status == JobStatus.QUEUED
    assert first.retry_count == 0


def test_different_job_types_are_independent(services, seeded):
    pid = seeded.presentation_id

    asr, _ = run(services.jobs.create(pid, JobType.ASR))
    slides, created = run(services.jobs.create(pid, JobType.SLIDES))

    assert created is True
    assert slides.id != asr.id


def test_new_job_allowed_once_previous_is_terminal(services, seeded):
    pid = seeded.presentation_id

    first, _ = run(services.jobs.create(pid, JobType.ASR))
    run(services.jobs.mark_completed(first.id))
    second, created = run(services.jobs.create(pid, JobType.ASR))

    assert created is True
    assert second.id != first.id


def test_create_for_unknown_presentation(services, seeded):
    with pytest.raises(NotFoundError):
        run(services.jobs.create(9999, JobType.ASR))


def test_mark_running_records_worker(services, seeded):
    job, _ = run(services.jobs.create(seeded.presentation_id, JobType.ASR))

    running = run(services.jobs.mark_running(job.id, "asr-worker-1"))

    assert running.status == JobStatus.RUNNING
    assert running.worker_name == "asr-worker-1"
    assert running.started_at is not None


def test_mark_running_rejects_finished_job(services, seeded):
    job, _ = run(services.jobs.create(seeded.presentation_id, JobType.ASR))
    run(services.jobs.mark_completed(job.id))

    with pytest.raises(ConflictError):
        run(services.jobs.mark_running(job.id, "late-worker"))


def test_mark_completed_reports_first_completion_once(services, seeded):
    job, _ = run(services.jobs.create(seeded.presentation_id, JobType.ASR))

    completed, first = run(services.jobs.mark_completed(job.id, {"segmentCount": 3}))
    again, first_again = run(services.jobs.mark_completed(job.id, {"segmentCount": 5}))

    assert first is True
    assert first_again is False
    assert completed.status == JobStatus.COMPLETED
    assert completed.completed_at is not None
    assert again.metadata["result"] == {"segmentCount": 5}


def test_mark_failed_bounds_retry_count(services, seeded):
    job, _ = run(services.jobs.create(seeded.presentation_id, JobType.ASR))

    for _ in range(5):
        failed = run(services.jobs.mark_failed(job.id, "worker crashed"))
        if failed.retry_count < services.settings.pipeline.max_retry:
            run(services.jobs.reopen(job.id))

    assert failed.status == JobStatus.FAILED
    assert failed.error_message == "worker crashed"
    assert failed.retry_count == services.settings.pipeline.max_retry


def test_reopen_requires_failed_job(services, seeded):
    job, _ = run(services.jobs.create(seeded.presentation_id, JobType.ASR))

    with pytest.raises(ConflictError):
        run(services.jobs.reopen(job.id))

    run(services.jobs.mark_failed(job.id, "boom"))
    reopened = run(services.jobs.reopen(job.id, reset_retries=True))

    assert reopened.status == JobStatus.QUEUED
    assert reopened.retry_count == 0
    assert reopened.completed_at is None


def test_requeue_if_running_only_touches_running_jobs(services, seeded):
    job, _ = run(services.jobs.create(seeded.presentation_id, JobType.ASR))

    assert run(services.jobs.requeue_if_running(job.id, "reset")) is None

    run(services.jobs.mark_running(job.id, "worker"))
    requeued = run(services.jobs.requeue_if_running(job.id, "reset"))

    assert requeued.status == JobStatus.QUEUED
    assert requeued.worker_name is None
    assert requeued.error_message == "reset"


def test_statistics_success_rate(services, seeded):
    pid = seeded.presentation_id
    asr, _ = run(services.jobs.create(pid, JobType.ASR))
    slides, _ = run(services.jobs.create(pid, JobType.SLIDES))
    run(services.jobs.create(pid, JobType.ANALYSIS))
    run(services.jobs.mark_completed(asr.id))
    run(services.jobs.mark_failed(slides.id, "ocr failed"))

    stats = run(services.jobs.statistics(pid))

    assert stats.total == 3
    assert stats.completed == 1
    assert stats.failed == 1
    assert stats.queued == 1
    assert stats.success_rate == 33.33


def test_purge_terminal_keeps_active_and_recent_jobs(services, seeded):
    pid = seeded.presentation_id
    old, _ = run(services.jobs.create(pid, JobType.ASR))
    run(services.jobs.mark_completed(old.id))
    recent, _ = run(services.jobs.create(pid, JobType.SLIDES))
    run(services.jobs.mark_failed(recent.id, "nope"))
    active, _ = run(services.jobs.create(pid, JobType.ASR))

    async def age_job():
        async with services.session_factory.begin() as session:
            await session.execute(
                update(Job)
                .where(Job.id == old.id)
                .values(completed_at=utcnow() - timedelta(days=45))
            )

    run(age_job())
    deleted = run(services.jobs.purge_terminal(utcnow() - timedelta(days=30)))

    assert deleted == 1
    assert run(services.jobs.get(old.id)) is None
    assert run(services.jobs.get(recent.id)) is not None
    assert run(services.jobs.get(active.id)).status == JobStatus.QUEUED


def test_history_is_oldest_first(services, seeded):
    pid = seeded.presentation_id
    first, _ = run(services.jobs.create(pid, JobType.ASR))
    run(services.jobs.mark_completed(first.id))
    second, _ = run(services.jobs.create(pid, JobType.ANALYSIS))

    history = run(services.jobs.history(pid))
    latest = run(services.jobs.by_presentation(pid))

    assert [job.id for job in history] == [first.id, second.id]
    assert [job.id for job in latest] == [second.id, first.id]


def test_session_scope_commits_or_rolls_back(services, seeded):
    pid = seeded.presentation_id

    async def set_title(title, fail=False):
        async with session_scope(services.session_factory) as session:
            presentation = await session.get(Presentation, pid)
            presentation.title = title
            await session.flush()
            if fail:
                raise RuntimeError("boom")

    async def current_title():
        async with services.session_factory() as session:
            return await session.scalar(select(Presentation.title).where(Presentation.id == pid))

    run(set_title("Solar power, revised"))
    with pytest.raises(RuntimeError):
        run(set_title("Never stored", fail=True))

    assert run(current_title()) == "Solar power, revised"

"""Worker callbacks through the HTTP surface."""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from app.models.analysis import AnalysisResult, AnalysisType, SegmentAnalysis
from app.models.feedback import Feedback
from app.models.job import Job, JobStatus, JobType
from app.models.presentation import Presentation, PresentationStatus, Slide
from app.models.speaker import Speaker
from app.models.transcript import Transcript, TranscriptSegment

from conftest import run, webhook_headers


def query(services, stmt):
    async def execute():
        async with services.session_factory() as session:
            return (await session.execute(stmt)).scalars().all()

    return run(execute())


def count(services, model, *criteria):
    (value,) = query(services, select(func.count()).select_from(model).where(*criteria))
    return value


def asr_payload(job_id, presentation_id, **overrides):
    payload = {
        "jobId": job_id,
        "presentationId": presentation_id,
        "status": "success",
        "transcript": {
            "fullText": "Good morning. Today we talk about solar power.",
            "language": "en",
            "segments": [
                {
                    "order": 2,
                    "startTimestamp": 4.0,
                    "endTimestamp": 10.0,
                    "text": "Today we talk about solar power.",
                    "confidence": 0.88,
                },
                {
                    "order": 1,
                    "startTimestamp": 0.0,
                    "endTimestamp": 4.0,
                    "text": "Good morning.",
                    "confidence": 0.95,
                },
            ],
        },
        "diarization": {
            "speakers": [
                {
                    "aiSpeakerLabel": "SPEAKER_00",
                    "segments": [{"startTime": 0.0, "endTime": 4.0}],
                    "metadata": {"gender": "female"},
                },
                {
                    "aiSpeakerLabel": "SPEAKER_01",
                    "segments": [{"startTime": 4.0, "endTime": 10.0}],
                },
            ],
            "segmentSpeakerMappings": [
                {"order": 1, "aiSpeakerLabel": "SPEAKER_00"},
                {"order": 2, "aiSpeakerLabel": "SPEAKER_01"},
                {"order": 7, "aiSpeakerLabel": "SPEAKER_01"},
            ],
        },
    }
    payload.update(overrides)
    return payload


def submit(services, seeded):
    return run(services.orchestrator.submit_presentation(seeded.presentation_id))


def deliver_asr(client, services, seeded):
    job = submit(services, seeded)
    response = client.post(
        "/webhooks/asr-complete",
        json=asr_payload(job.id, seeded.presentation_id),
        headers=webhook_headers(),
    )
    assert response.status_code == 200, response.text
    return job


def active_job(services, presentation_id, job_type):
    (job,) = query(
        services,
        select(Job).where(
            Job.presentation_id == presentation_id,
            Job.job_type == job_type,
            Job.status == JobStatus.QUEUED,
        ),
    )
    return job


def test_missing_secret_is_unauthorized(client, services, seeded):
    job = submit(services, seeded)

    response = client.post(
        "/webhooks/asr-complete", json=asr_payload(job.id, seeded.presentation_id)
    )

    assert response.status_code == 401
    assert response.json()["code"] == "auth_error"
    assert count(services, Transcript) == 0


def test_wrong_secret_is_forbidden(client, services, seeded):
    job = submit(services, seeded)

    response = client.post(
        "/webhooks/asr-complete",
        json=asr_payload(job.id, seeded.presentation_id),
        headers=webhook_headers("not-the-secret"),
    )

    assert response.status_code == 403
    assert count(services, Transcript) == 0


def test_unset_secret_accepts_callbacks(client, services, seeded, caplog):
    services.settings.webhook.secret = None
    job = submit(services, seeded)

    response = client.post(
        "/webhooks/asr-complete", json=asr_payload(job.id, seeded.presentation_id)
    )

    assert response.status_code == 200
    warnings = [
        record
        for record in caplog.records
        if record.name == "app.controllers.dependencies" and record.levelno == logging.WARNING
    ]
    assert warnings


def test_auth_warnings_share_the_webhook_log_file(client):
    auth_handlers = logging.getLogger("app.controllers.dependencies").handlers
    ingestion_handlers = logging.getLogger("app.services.webhook_ingestion").handlers

    assert auth_handlers
    assert auth_handlers == ingestion_handlers


def test_malformed_body_is_a_validation_error(client, services, seeded):
    response = client.post(
        "/webhooks/asr-complete",
        json={"presentationId": seeded.presentation_id, "status": "success"},
        headers=webhook_headers(),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_unknown_job_is_not_found(client, services, seeded):
    response = client.post(
        "/webhooks/asr-complete",
        json=asr_payload(777, seeded.presentation_id),
        headers=webhook_headers(),
    )

    assert response.status_code == 404


def test_job_must_match_stage_and_presentation(client, services, seeded):
    job = submit(services, seeded)

    wrong_stage = client.post(
        "/webhooks/report-complete",
        json={"jobId": job.id, "presentationId": seeded.presentation_id, "status": "success"},
        headers=webhook_headers(),
    )
    wrong_presentation = client.post(
        "/webhooks/asr-complete",
        json=asr_payload(job.id, seeded.presentation_id + 1),
        headers=webhook_headers(),
    )

    assert wrong_stage.status_code == 400
    assert wrong_presentation.status_code == 400
    assert run(services.jobs.get(job.id)).status == JobStatus.QUEUED


def test_asr_success_stores_transcript_and_chains_analysis(client, services, seeded, queue):
    job = submit(services, seeded)

    response = client.post(
        "/webhooks/asr-complete",
        json=asr_payload(job.id, seeded.presentation_id),
        headers=webhook_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["transcriptCreated"] is True
    assert body["data"]["segmentCount"] == 2
    assert body["data"]["speakerCount"] == 2
    assert body["data"]["linkedSegments"] == 2

    segments = query(
        services, select(TranscriptSegment).order_by(TranscriptSegment.order)
    )
    assert [segment.text for segment in segments] == [
        "Good morning.",
        "Today we talk about solar power.",
    ]
    speakers = {
        speaker.ai_speaker_label: speaker
        for speaker in query(services, select(Speaker))
    }
    assert speakers["SPEAKER_01"].total_duration_seconds == 6.0
    assert speakers["SPEAKER_00"].speaker_metadata["gender"] == "female"
    assert speakers["SPEAKER_00"].speaker_metadata["createdFrom"] == "diarization"
    assert segments[0].speaker_id == speakers["SPEAKER_00"].id

    assert run(services.jobs.get(job.id)).status == JobStatus.COMPLETED
    (analysis_envelope,) = queue.envelopes("analysis")
    (transcript,) = query(services, select(Transcript))
    assert analysis_envelope["transcriptId"] == transcript.id
    assert transcript.language == "en"


def test_duplicate_asr_delivery_is_absorbed(client, services, seeded, queue):
    job = deliver_asr(client, services, seeded)

    response = client.post(
        "/webhooks/asr-complete",
        json=asr_payload(job.id, seeded.presentation_id),
        headers=webhook_headers(),
    )

    assert response.status_code == 200
    assert count(services, Transcript) == 1
    assert count(services, TranscriptSegment) == 2
    assert count(services, Speaker) == 2
    assert len(queue.envelopes("analysis")) == 1


def presentation_status(services, presentation_id):
    (status,) = query(
        services, select(Presentation.status).where(Presentation.id == presentation_id)
    )
    return status


def post_asr_failure(client, job_id, presentation_id):
    return client.post(
        "/webhooks/asr-complete",
        json={
            "jobId": job_id,
            "presentationId": presentation_id,
            "status": "failed",
            "error": "audio unreadable",
        },
        headers=webhook_headers(),
    )


def test_asr_failure_is_retried(client, services, seeded, queue):
    job = submit(services, seeded)

    response = post_asr_failure(client, job.id, seeded.presentation_id)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["failureRecorded"] is True
    assert data["retried"] is True
    assert data["retryCount"] == 1
    assert data["jobStatus"] == "queued"
    assert count(services, Transcript) == 0
    assert len(queue.envelopes("asr")) == 2
    assert presentation_status(services, seeded.presentation_id) == PresentationStatus.PROCESSING


def test_presentation_fails_only_when_retries_run_out(client, services, seeded):
    job = submit(services, seeded)
    observed = []

    for _ in range(3):
        response = post_asr_failure(client, job.id, seeded.presentation_id)
        assert response.status_code == 200
        data = response.json()["data"]
        observed.append(
            (
                data["retryCount"],
                data["jobStatus"],
                presentation_status(services, seeded.presentation_id),
            )
        )

    assert observed == [
        (1, "queued", PresentationStatus.PROCESSING),
        (2, "queued", PresentationStatus.PROCESSING),
        (3, "failed", PresentationStatus.FAILED),
    ]


def test_unexpected_error_rolls_back_and_fails_job(client, services, seeded, monkeypatch):
    job = submit(services, seeded)

    async def write_then_crash(session, job, payload):
        session.add(Transcript(presentation_id=job.presentation_id, full_text="partial"))
        await session.flush()
        raise RuntimeError("disk full")

    monkeypatch.setattr(services.ingestion, "_apply_asr", write_then_crash)

    response = client.post(
        "/webhooks/asr-complete",
        json=asr_payload(job.id, seeded.presentation_id),
        headers=webhook_headers(),
    )

    assert response.status_code == 500
    assert response.json()["code"] == "ingestion_error"
    assert count(services, Transcript) == 0

    failed = run(services.jobs.get(job.id))
    assert failed.status == JobStatus.FAILED
    assert failed.error_message == "Webhook processing error: disk full"
    assert presentation_status(services, seeded.presentation_id) == PresentationStatus.FAILED


def test_analysis_webhook_stores_scores(client, services, seeded, queue):
    deliver_asr(client, services, seeded)
    analysis_job = active_job(services, seeded.presentation_id, JobType.ANALYSIS)
    segment_ids = query(
        services, select(TranscriptSegment.id).order_by(TranscriptSegment.order)
    )

    response = client.post(
        "/webhooks/analysis-complete",
        json={
            "jobId": analysis_job.id,
            "presentationId": seeded.presentation_id,
            "status": "success",
            "analysis": {
                "segmentAnalyses": [
                    {
                        "segmentId": segment_ids[0],
                        "relevanceScore": 0.8,
                        "semanticScore": 0.7,
                        "alignmentScore": 0.9,
                        "slideId": seeded.slide_ids[0],
                        "issues": [],
                    },
                    {"segmentId": segment_ids[1], "relevanceScore": 0.4, "issues": ["off topic"]},
                ],
                "overallScores": {"contentRelevance": 0.6, "semanticSimilarity": 0.7},
            },
        },
        headers=webhook_headers(),
    )

    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["segmentAnalysisCount"] == 2
    (result,) = query(
        services,
        select(AnalysisResult).where(AnalysisResult.analysis_type == AnalysisType.CONTENT),
    )
    assert result.overall_score == 0.6
    assert result.detailed_scores["semanticSimilarity"] == 0.7
    assert data["analysisResultId"] == result.id
    (report_envelope,) = queue.envelopes("report")
    assert report_envelope["analysisResultId"] == result.id


def test_analysis_rejects_segments_from_other_presentations(client, services, seeded):
    deliver_asr(client, services, seeded)
    analysis_job = active_job(services, seeded.presentation_id, JobType.ANALYSIS)

    response = client.post(
        "/webhooks/analysis-complete",
        json={
            "jobId": analysis_job.id,
            "presentationId": seeded.presentation_id,
            "status": "success",
            "analysis": {"segmentAnalyses": [{"segmentId": 9999, "relevanceScore": 0.5}]},
        },
        headers=webhook_headers(),
    )

    assert response.status_code == 400
    assert count(services, SegmentAnalysis) == 0
    assert run(services.jobs.get(analysis_job.id)).status == JobStatus.QUEUED


def report_payload(job_id, presentation_id):
    return {
        "jobId": job_id,
        "presentationId": presentation_id,
        "status": "success",
        "report": {
            "feedbackItems": [
                {
                    "level": "presentation",
                    "category": "structure",
                    "severity": "info",
                    "message": "Clear introduction.",
                    "suggestions": ["Keep it up"],
                },
                {
                    "level": "presentation",
                    "category": "pace",
                    "severity": "warning",
                    "message": "Speaking too fast in the middle section.",
                },
            ],
            "summary": {
                "overallScore": 7.5,
                "strengths": ["structure"],
                "weaknesses": ["pace"],
                "recommendations": ["Pause between slides"],
            },
        },
    }


def test_report_webhook_completes_presentation(client, services, seeded):
    report_job = run(
        services.orchestrator.create_job(seeded.presentation_id, JobType.REPORT)
    )

    response = client.post(
        "/webhooks/report-complete",
        json=report_payload(report_job.id, seeded.presentation_id),
        headers=webhook_headers(),
    )

    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["feedbackCount"] == 2
    assert data["summarySaved"] is True
    assert count(services, Feedback) == 2
    (presentation,) = query(services, select(Presentation))
    assert presentation.status == PresentationStatus.COMPLETED
    assert presentation.completed_at is not None
    assert run(services.jobs.get(report_job.id)).status == JobStatus.COMPLETED


def test_duplicate_report_delivery_appends_feedback(client, services, seeded, caplog):
    report_job = run(
        services.orchestrator.create_job(seeded.presentation_id, JobType.REPORT)
    )
    body = report_payload(report_job.id, seeded.presentation_id)

    first = client.post("/webhooks/report-complete", json=body, headers=webhook_headers())
    with caplog.at_level("INFO", logger="app.services.orchestrator"):
        second = client.post(
            "/webhooks/report-complete", json=body, headers=webhook_headers()
        )

    assert first.status_code == 200
    assert second.status_code == 200
    assert count(services, Feedback) == 4
    assert (
        count(
            services,
            AnalysisResult,
            AnalysisResult.analysis_type == AnalysisType.SUMMARY,
        )
        == 1
    )
    assert run(services.jobs.get(report_job.id)).status == JobStatus.COMPLETED
    assert any("not chaining again" in record.getMessage() for record in caplog.records)


def test_slides_job_completes_after_last_slide(client, services, seeded):
    job = run(services.orchestrator.process_slides(seeded.presentation_id))
    first, second = seeded.slide_ids

    first_response = client.post(
        "/webhooks/slides-complete",
        json={
            "jobId": job.id,
            "presentationId": seeded.presentation_id,
            "slideId": first,
            "status": "success",
            "result": {
                "pages": [
                    {"pageNumber": 2, "text": "Costs"},
                    {"pageNumber": 1, "text": "Solar"},
                ],
                "embedding": [0.1, 0.2, 0.3],
            },
        },
        headers=webhook_headers(),
    )

    assert first_response.status_code == 200, first_response.text
    first_data = first_response.json()["data"]
    assert first_data["remainingSlides"] == 1
    assert first_data["hasEmbedding"] is True
    assert run(services.jobs.get(job.id)).status == JobStatus.QUEUED
    (text,) = query(services, select(Slide.extracted_text).where(Slide.id == first))
    assert text == "[Page 1]\nSolar\n\n[Page 2]\nCosts"

    second_response = client.post(
        "/webhooks/slides-complete",
        json={
            "jobId": job.id,
            "presentationId": seeded.presentation_id,
            "slideId": second,
            "status": "success",
            "result": {"extractedText": "Thank you"},
        },
        headers=webhook_headers(),
    )

    assert second_response.json()["data"]["remainingSlides"] == 0
    assert run(services.jobs.get(job.id)).status == JobStatus.COMPLETED


def test_slides_webhook_requires_slide_of_presentation(client, services, seeded):
    job = run(services.orchestrator.process_slides(seeded.presentation_id))

    response = client.post(
        "/webhooks/slides-complete",
        json={
            "jobId": job.id,
            "presentationId": seeded.presentation_id,
            "slideId": 999,
            "status": "success",
        },
        headers=webhook_headers(),
    )

    assert response.status_code == 404


def test_job_started_marks_running(client, services, seeded):
    job = submit(services, seeded)

    response = client.post(
        "/webhooks/job-started",
        json={"jobId": job.id, "workerName": "asr-worker-7"},
        headers=webhook_headers(),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "running"
    assert data["workerName"] == "asr-worker-7"


def test_webhook_health_needs_no_secret(client):
    response = client.get("/webhooks/health")

    assert response.status_code == 200
    assert response.json()["database"] == "connected"

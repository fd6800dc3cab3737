"""Job management endpoints."""

from __future__ import annotations

from prometheus_client import REGISTRY

from app.models.job import JobType

from conftest import bearer, run


def test_submit_and_inspect_job(client, seeded, queue):
    headers = bearer(seeded.student_ids[0])

    submitted = client.post(
        f"/jobs/presentation/{seeded.presentation_id}/submit", headers=headers
    )

    assert submitted.status_code == 202
    job = submitted.json()
    assert job["jobType"] == "asr"
    assert job["status"] == "queued"
    assert job["queueMessageId"] == "msg-1"
    assert job["metadata"]["requested_by"] == seeded.student_ids[0]

    fetched = client.get(f"/jobs/{job['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["presentationId"] == seeded.presentation_id

    pending = client.get("/jobs/pending", params={"jobType": "asr"}, headers=headers)
    assert [item["id"] for item in pending.json()] == [job["id"]]


def test_job_endpoints_require_a_token(client, seeded):
    assert client.get("/jobs/statistics").status_code == 401


def test_unknown_job_returns_404(client, seeded):
    response = client.get("/jobs/9999", headers=bearer(seeded.instructor_id))

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_retry_of_active_job_conflicts(client, services, seeded):
    job = run(services.orchestrator.submit_presentation(seeded.presentation_id))

    response = client.post(f"/jobs/{job.id}/retry", headers=bearer(seeded.instructor_id))

    assert response.status_code == 409


def test_retry_of_failed_job(client, services, seeded):
    job = run(services.orchestrator.submit_presentation(seeded.presentation_id))
    run(services.orchestrator.fail_job(job.id, "broken", should_retry=False))

    response = client.post(f"/jobs/{job.id}/retry", headers=bearer(seeded.instructor_id))

    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    assert response.json()["retryCount"] == 0


def test_statistics_and_history(client, services, seeded):
    job = run(services.orchestrator.submit_presentation(seeded.presentation_id))
    run(services.orchestrator.complete_job(job.id))
    headers = bearer(seeded.instructor_id)

    stats = client.get(
        "/jobs/statistics",
        params={"presentationId": seeded.presentation_id},
        headers=headers,
    )
    history = client.get(
        f"/jobs/presentation/{seeded.presentation_id}/history", headers=headers
    )

    assert stats.json() == {
        "total": 2,
        "queued": 1,
        "running": 0,
        "completed": 1,
        "failed": 0,
        "successRate": 50.0,
    }
    assert [item["jobType"] for item in history.json()] == ["asr", "analysis"]


def test_process_slides_endpoint(client, seeded, queue):
    response = client.post(
        f"/jobs/presentation/{seeded.presentation_id}/slides",
        json={"slideIds": [seeded.slide_ids[1]]},
        headers=bearer(seeded.instructor_id),
    )

    assert response.status_code == 202
    assert response.json()["metadata"]["slide_ids"] == [seeded.slide_ids[1]]
    assert queue.envelopes("slides")[0]["slideIds"] == [seeded.slide_ids[1]]


def test_admin_only_maintenance(client, services, seeded):
    run(services.orchestrator.submit_presentation(seeded.presentation_id))

    forbidden = client.post("/jobs/cleanup", headers=bearer(seeded.instructor_id))
    cleanup = client.post("/jobs/cleanup", json={"days": 7}, headers=bearer(seeded.admin_id))
    reset = client.post("/jobs/reset-stuck", headers=bearer(seeded.admin_id))

    assert forbidden.status_code == 403
    assert cleanup.status_code == 200
    assert cleanup.json() == {"message": "Deleted 0 old jobs", "count": 0}
    assert reset.json()["count"] == 0


def test_queue_status(client, seeded, queue):
    healthy = client.get("/jobs/queues", headers=bearer(seeded.admin_id))
    queue.fail = True
    broken = client.get("/jobs/queues", headers=bearer(seeded.admin_id))

    assert healthy.json()["asr"] == {"configured": True, "reachable": True, "error": None}
    assert broken.json()["report"]["reachable"] is False


def test_running_jobs_filter(client, services, seeded):
    job = run(services.orchestrator.submit_presentation(seeded.presentation_id))
    run(services.orchestrator.mark_running(job.id, "asr-worker"))

    response = client.get(
        "/jobs/running", params={"jobType": JobType.ASR.value}, headers=bearer(seeded.admin_id)
    )

    assert [item["workerName"] for item in response.json()] == ["asr-worker"]


def request_count(method, route, status):
    value = REGISTRY.get_sample_value(
        "http_requests_total", {"method": method, "route": route, "status": status}
    )
    return value or 0.0


def test_request_metrics_use_route_templates(client, seeded):
    before = request_count("GET", "/jobs/{job_id}", "404")
    unmatched_before = request_count("GET", "unmatched", "404")

    client.get("/jobs/9998", headers=bearer(seeded.instructor_id))
    client.get("/jobs/9999", headers=bearer(seeded.instructor_id))
    client.get("/no-such-page")

    assert request_count("GET", "/jobs/{job_id}", "404") == before + 2
    assert request_count("GET", "unmatched", "404") == unmatched_before + 1
    assert request_count("GET", "/jobs/9999", "404") == 0.0

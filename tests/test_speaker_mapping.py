"""Speaker to student reconciliation."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from app.models.speaker import Speaker
from app.models.transcript import Transcript, TranscriptSegment
from app.services.errors import ConflictError, NotFoundError

from conftest import bearer, run


async def _add_speakers(services, presentation_id):
    async with services.session_factory.begin() as session:
        transcript = Transcript(presentation_id=presentation_id, full_text="...")
        session.add(transcript)
        await session.flush()

        first = Speaker(
            presentation_id=presentation_id,
            ai_speaker_label="SPEAKER_00",
            total_duration_seconds=30.0,
            segment_count=2,
        )
        second = Speaker(
            presentation_id=presentation_id,
            ai_speaker_label="SPEAKER_01",
            total_duration_seconds=10.0,
            segment_count=1,
        )
        session.add_all([first, second])
        await session.flush()

        session.add_all(
            [
                TranscriptSegment(
                    transcript_id=transcript.id,
                    speaker_id=first.id,
                    order=1,
                    start_timestamp=0.0,
                    end_timestamp=12.5,
                    text="Hello everyone",
                ),
                TranscriptSegment(
                    transcript_id=transcript.id,
                    speaker_id=first.id,
                    order=2,
                    start_timestamp=12.5,
                    end_timestamp=20.0,
                    text="Let us begin",
                ),
                TranscriptSegment(
                    transcript_id=transcript.id,
                    speaker_id=second.id,
                    order=3,
                    start_timestamp=20.0,
                    end_timestamp=30.0,
                    text="Thanks",
                ),
            ]
        )
        return first.id, second.id


@pytest.fixture
def speakers(services, seeded):
    return run(_add_speakers(services, seeded.presentation_id))


def test_map_to_student(services, seeded, speakers):
    speaker_id, _ = speakers
    student_id = seeded.student_ids[0]

    record = run(services.speakers.map_to_student(speaker_id, student_id))

    assert record.student_id == student_id
    assert record.student_name == "Student 1"
    assert record.is_mapped is True


def test_student_cannot_be_mapped_twice_in_one_presentation(services, seeded, speakers):
    first, second = speakers
    student_id = seeded.student_ids[0]
    run(services.speakers.map_to_student(first, student_id))

    with pytest.raises(ConflictError):
        run(services.speakers.map_to_student(second, student_id))

    assert run(services.speakers.get(first)).student_id == student_id
    assert run(services.speakers.get(second)).student_id is None


def test_map_unknown_speaker_or_student(services, seeded, speakers):
    with pytest.raises(NotFoundError):
        run(services.speakers.map_to_student(999, seeded.student_ids[0]))
    with pytest.raises(NotFoundError):
        run(services.speakers.map_to_student(speakers[0], 999))


def test_batch_map_reports_each_mapping(services, seeded, speakers):
    first, second = speakers
    student_id = seeded.student_ids[0]

    results = run(
        services.speakers.batch_map(
            [
                {"speaker_id": first, "student_id": student_id},
                {"speaker_id": second, "student_id": student_id},
                {"speaker_id": 999, "student_id": seeded.student_ids[1]},
            ]
        )
    )

    assert [record.id for record in results["success"]] == [first]
    assert [failure["speakerId"] for failure in results["failed"]] == [second, 999]


def test_unmap_clears_student(services, seeded, speakers):
    run(services.speakers.map_to_student(speakers[0], seeded.student_ids[0]))

    record = run(services.speakers.unmap(speakers[0]))

    assert record.student_id is None
    assert record.is_mapped is False


def test_suggestions_pair_unmapped_speakers_with_available_students(services, seeded, speakers):
    first, second = speakers
    run(services.speakers.map_to_student(first, seeded.student_ids[0]))

    suggestions = run(services.speakers.suggest_mappings(seeded.presentation_id))

    assert len(suggestions) == 1
    (suggestion,) = suggestions
    assert suggestion["speakerId"] == second
    assert suggestion["suggestedStudent"]["userId"] == seeded.student_ids[1]
    assert suggestion["confidence"] == "low"
    assert suggestion["reason"] == "Enrolled in course"


def test_suggestions_for_unknown_presentation(services, seeded):
    with pytest.raises(NotFoundError):
        run(services.speakers.suggest_mappings(4040))


def test_statistics_percentages(services, seeded, speakers):
    run(services.speakers.map_to_student(speakers[0], seeded.student_ids[0]))

    stats = run(services.speakers.statistics(seeded.presentation_id))

    assert stats["totalSpeakers"] == 2
    assert stats["mappedSpeakers"] == 1
    assert stats["mappingProgress"] == 50.0
    shares = {item["aiSpeakerLabel"]: item["percentage"] for item in stats["speakers"]}
    assert shares == {"SPEAKER_00": 75.0, "SPEAKER_01": 25.0}


def test_list_filters_by_mapping_state(services, seeded, speakers):
    run(services.speakers.map_to_student(speakers[0], seeded.student_ids[0]))

    mapped = run(services.speakers.list_by_presentation(seeded.presentation_id, True))
    unmapped = run(services.speakers.list_by_presentation(seeded.presentation_id, False))

    assert [record.id for record in mapped] == [speakers[0]]
    assert [record.id for record in unmapped] == [speakers[1]]


def test_refresh_stats_recomputes_from_segments(services, seeded, speakers):
    record = run(services.speakers.refresh_stats(speakers[0]))

    assert record.total_duration_seconds == 20.0
    assert record.segment_count == 2


def test_student_summary(services, seeded, speakers):
    run(services.speakers.map_to_student(speakers[1], seeded.student_ids[2]))

    summary = run(services.speakers.student_summary(seeded.student_ids[2]))

    assert summary["totalPresentations"] == 1
    assert summary["totalSpeakingTimeSeconds"] == 10.0
    assert summary["presentations"][0]["aiSpeakerLabel"] == "SPEAKER_01"


def test_delete_detaches_segments(services, seeded, speakers):
    run(services.speakers.delete(speakers[0]))

    async def segment_speakers():
        async with services.session_factory() as session:
            result = await session.execute(
                select(TranscriptSegment.speaker_id).order_by(TranscriptSegment.order)
            )
            return result.scalars().all()

    assert run(segment_speakers()) == [None, None, speakers[1]]
    with pytest.raises(NotFoundError):
        run(services.speakers.get(speakers[0]))


def test_mapping_endpoint_requires_instructor(client, seeded, speakers):
    path = f"/speakers/{speakers[0]}/map"
    body = {"studentId": seeded.student_ids[0]}

    anonymous = client.put(path, json=body)
    as_student = client.put(path, json=body, headers=bearer(seeded.student_ids[0]))
    as_instructor = client.put(path, json=body, headers=bearer(seeded.instructor_id))

    assert anonymous.status_code == 401
    assert as_student.status_code == 403
    assert as_instructor.status_code == 200
    assert as_instructor.json()["studentId"] == seeded.student_ids[0]
    assert as_instructor.json()["aiSpeakerLabel"] == "SPEAKER_00"


def test_mapping_conflict_over_http(client, seeded, speakers):
    headers = bearer(seeded.instructor_id)
    client.put(
        f"/speakers/{speakers[0]}/map",
        json={"studentId": seeded.student_ids[0]},
        headers=headers,
    )

    response = client.put(
        f"/speakers/{speakers[1]}/map",
        json={"studentId": seeded.student_ids[0]},
        headers=headers,
    )

    assert response.status_code == 409
    assert response.json()["code"] == "conflict"


def test_batch_map_endpoint(client, seeded, speakers):
    response = client.post(
        "/speakers/batch-map",
        json={
            "mappings": [
                {"speakerId": speakers[0], "studentId": seeded.student_ids[0]},
                {"speakerId": speakers[1], "studentId": seeded.student_ids[0]},
            ]
        },
        headers=bearer(seeded.instructor_id),
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body["success"]) == 1
    assert body["failed"][0]["speakerId"] == speakers[1]


def test_list_and_stats_endpoints(client, seeded, speakers):
    headers = bearer(seeded.student_ids[0])

    listing = client.get(f"/speakers/presentation/{seeded.presentation_id}", headers=headers)
    stats = client.get(
        f"/speakers/presentation/{seeded.presentation_id}/stats", headers=headers
    )

    assert listing.status_code == 200
    assert [item["aiSpeakerLabel"] for item in listing.json()] == ["SPEAKER_00", "SPEAKER_01"]
    assert stats.json()["totalDurationSeconds"] == 40.0

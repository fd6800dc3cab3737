"""Endpoints for mapping diarized speakers to students."""

from __future__ import annotations

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Query, Response, status

from app.controllers.dependencies import CurrentUserDep, InstructorDep, ServicesDep
from app.views import (
    BatchMapRequest,
    BatchMapResponse,
    MapSpeakerRequest,
    SpeakerResponse,
)

router = APIRouter(prefix="/speakers", tags=["speakers"])


@router.get("/presentation/{presentation_id}", response_model=list[SpeakerResponse])
async def list_speakers(
    presentation_id: int,
    services: ServicesDep,
    _: CurrentUserDep,
    mapped: Annotated[Optional[bool], Query()] = None,
) -> list[SpeakerResponse]:
    speakers = await services.speakers.list_by_presentation(presentation_id, mapped)
    return [SpeakerResponse.from_record(speaker) for speaker in speakers]


@router.get("/presentation/{presentation_id}/stats")
async def speaker_statistics(
    presentation_id: int, services: ServicesDep, _: CurrentUserDep
) -> dict[str, Any]:
    return await services.speakers.statistics(presentation_id)


@router.get("/presentation/{presentation_id}/suggestions")
async def mapping_suggestions(
    presentation_id: int, services: ServicesDep, _: InstructorDep
) -> list[dict[str, Any]]:
    return await services.speakers.suggest_mappings(presentation_id)


@router.post("/batch-map", response_model=BatchMapResponse)
async def batch_map(
    payload: BatchMapRequest, services: ServicesDep, _: InstructorDep
) -> BatchMapResponse:
    results = await services.speakers.batch_map(
        {"speaker_id": item.speaker_id, "student_id": item.student_id}
        for item in payload.mappings
    )
    return BatchMapResponse(
        success=[SpeakerResponse.from_record(record) for record in results["success"]],
        failed=results["failed"],
    )


@router.get("/student/{student_id}/summary")
async def student_summary(
    student_id: int, services: ServicesDep, _: CurrentUserDep
) -> dict[str, Any]:
    return await services.speakers.student_summary(student_id)


@router.get("/{speaker_id}", response_model=SpeakerResponse)
async def get_speaker(
    speaker_id: int, services: ServicesDep, _: CurrentUserDep
) -> SpeakerResponse:
    return SpeakerResponse.from_record(await services.speakers.get(speaker_id))


@router.put("/{speaker_id}/map", response_model=SpeakerResponse)
async def map_speaker(
    speaker_id: int,
    payload: MapSpeakerRequest,
    services: ServicesDep,
    _: InstructorDep,
) -> SpeakerResponse:
    record = await services.speakers.map_to_student(speaker_id, payload.student_id)
    return SpeakerResponse.from_record(record)


@router.delete("/{speaker_id}/map", response_model=SpeakerResponse)
async def unmap_speaker(
    speaker_id: int, services: ServicesDep, _: InstructorDep
) -> SpeakerResponse:
    return SpeakerResponse.from_record(await services.speakers.unmap(speaker_id))


@router.post("/{speaker_id}/refresh-stats", response_model=SpeakerResponse)
async def refresh_speaker_stats(
    speaker_id: int, services: ServicesDep, _: InstructorDep
) -> SpeakerResponse:
    return SpeakerResponse.from_record(await services.speakers.refresh_stats(speaker_id))


@router.delete("/{speaker_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_speaker(
    speaker_id: int, services: ServicesDep, _: InstructorDep
) -> Response:
    await services.speakers.delete(speaker_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]

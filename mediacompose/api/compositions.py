"""Composition endpoints: sequential compilation, timeline composition, job status."""

import logging

from fastapi import APIRouter, Response

from mediacompose.api.deps import ApiKey, Service
from mediacompose.schemas.composition import (
    ComposeRequest,
    ComposeResponse,
    CompositionStatusResponse,
    SequenceRequest,
)

router = APIRouter()
logger = logging.getLogger(__name__)

COMPOSITION_ID_HEADER = "X-Composition-Id"


@router.post(
    "/single_api",
    dependencies=[ApiKey],
    response_class=Response,
    responses={200: {"content": {"video/mp4": {}}, "description": "Compiled video"}},
)
async def compile_sequential_video(request: SequenceRequest, service: Service) -> Response:
    """
    Compile ordered video and narration segments into one MP4.

    Each narration segment is overlaid on the most recent video segment (or a
    default video when none precedes it); the overlays are concatenated in id
    order and returned as the response body.
    """
    logger.info(f"[SEQUENCE] Request received: type={request.type}, segments={len(request.data)}")
    result = await service.compile_sequence(request.type, request.data)
    return Response(
        content=result.video,
        media_type="video/mp4",
        headers={
            COMPOSITION_ID_HEADER: result.job_id,
            "Content-Disposition": 'attachment; filename="final_video.mp4"',
        },
    )


@router.post("/api/videos/compose", response_model=ComposeResponse)
async def compose_video(request: ComposeRequest, service: Service) -> ComposeResponse:
    """Trim and join the timeline's video/audio clips into one artifact."""
    logger.info(
        f"[COMPOSE] Request received: {len(request.assets)} asset(s), "
        f"{len(request.timeline)} timeline entr(ies)"
    )
    result = await service.compose_timeline(request)
    return ComposeResponse(
        id=result.job_id,
        output_path=result.output_path,
        message="Video composed successfully",
    )


@router.get("/api/videos/status/{composition_id}", response_model=CompositionStatusResponse)
async def get_composition_status(composition_id: str, service: Service) -> CompositionStatusResponse:
    job = await service.get_composition(composition_id)
    return CompositionStatusResponse(
        id=job.id,
        status=job.status.value,
        steps=job.steps,
        video_path=job.output_path,
        expiration_time=job.expires_at,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )

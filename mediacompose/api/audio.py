import base64
import logging

from fastapi import APIRouter, Response

from mediacompose.api.deps import Composer
from mediacompose.exceptions import SegmentProcessingError, ValidationError
from mediacompose.schemas.audio import AudioConversionRequest, AudioConversionResponse
from mediacompose.services.segment_normalizer import decode_payload

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/api/audio/convert-audio",
    response_model=AudioConversionResponse,
    responses={200: {"content": {"application/octet-stream": {}}}},
)
async def convert_audio(request: AudioConversionRequest, composer: Composer):
    """Convert base64 audio to ``outputFormat``; JSON base64 or raw bytes."""
    try:
        payload = decode_payload(request.audio_base64).data
    except SegmentProcessingError as e:
        raise ValidationError(f"Invalid audio payload: {e.message}") from e

    logger.info(
        f"[FFMPEG] Converting {len(payload)} bytes ({request.input_mime_type or 'unknown'}) "
        f"to {request.output_format}"
    )
    converted = await composer.convert_audio(payload, request.output_format)

    if request.return_type == "binary":
        return Response(content=converted, media_type=f"audio/{request.output_format}")

    return AudioConversionResponse(
        converted_audio_base64=base64.b64encode(converted).decode("ascii"),
        message=f"Audio converted to {request.output_format} successfully",
    )

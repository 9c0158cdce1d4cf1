from mediacompose.schemas.audio import AudioConversionRequest, AudioConversionResponse
from mediacompose.schemas.composition import (
    Asset,
    AssetSource,
    AssetSpecs,
    ComposeRequest,
    ComposeResponse,
    CompositionStatusResponse,
    GlobalSettings,
    SequenceRequest,
    TimelineEntry,
)
from mediacompose.schemas.envelope import ErrorInfo, ErrorResponse

__all__ = [
    "SequenceRequest",
    "Asset",
    "AssetSource",
    "AssetSpecs",
    "TimelineEntry",
    "GlobalSettings",
    "ComposeRequest",
    "ComposeResponse",
    "CompositionStatusResponse",
    "AudioConversionRequest",
    "AudioConversionResponse",
    "ErrorInfo",
    "ErrorResponse",
]

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Sequential compilation (POST /single_api)
# =============================================================================


class SequenceRequest(BaseModel):
    """Ordered media segments to compile into one video.

    ``data`` entries are validated by the segment normalizer, so malformed
    segments produce a 400 with a descriptive message rather than a 422.
    """

    type: str = Field(..., description="Must be 'compile_sequential_video'")
    data: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Segments: {id, type: video|tts, base_64, content?}",
    )


# =============================================================================
# Timeline composition (POST /api/videos/compose)
# =============================================================================


class AssetSource(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str | None = None
    data_base64: str | None = Field(default=None, alias="dataBase64")
    content: str | None = None


class Resolution(BaseModel):
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class AssetSpecs(BaseModel):
    """Per-asset trim and presentation hints. Times are in milliseconds."""

    model_config = ConfigDict(populate_by_name=True)

    start_trim: float = Field(default=0, ge=0, alias="startTrim")
    duration: float = Field(..., gt=0)
    resolution: Resolution | None = None
    position: dict[str, Any] | None = None
    effects: dict[str, Any] | None = None
    volume: float | None = None
    font: str | None = None
    font_size: float | None = Field(default=None, alias="fontSize")
    color: str | None = None


class Asset(BaseModel):
    id: str
    type: Literal["video", "audio", "text", "image"]
    source: AssetSource = Field(default_factory=AssetSource)
    aspecs: AssetSpecs


class TimelineEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    asset_id: str = Field(..., alias="assetId")
    start_time: float = Field(..., ge=0, alias="startTime")
    override: dict[str, Any] | None = None


class GlobalSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resolution: Resolution | None = None
    output_format: Literal["mp4", "mov"] = Field(default="mp4", alias="outputFormat")


class ComposeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assets: list[Asset]
    timeline: list[TimelineEntry]
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings, alias="globalSettings")


class ComposeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["success"] = "success"
    id: str
    output_path: str = Field(..., alias="outputPath")
    message: str = "Video composed successfully"


class CompositionStatusResponse(BaseModel):
    id: str
    status: str
    steps: list[str]
    video_path: str | None
    expiration_time: datetime | None
    created_at: datetime | None
    updated_at: datetime | None

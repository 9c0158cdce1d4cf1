from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AudioConversionRequest(BaseModel):
    """Convert base64 audio to another container.

    ``audio_base64`` may carry a ``data:<mime>;base64,`` prefix.
    """

    model_config = ConfigDict(populate_by_name=True)

    input_mime_type: str | None = Field(default=None, alias="inputMimeType")
    audio_base64: str = Field(..., min_length=1, alias="audioBase64")
    output_format: Literal["mp3", "wav", "ogg", "flac", "aac", "opus"] = Field(..., alias="outputFormat")
    return_type: Literal["base64", "binary"] = Field(default="base64", alias="returnType")


class AudioConversionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["success"] = "success"
    converted_audio_base64: str = Field(..., alias="convertedAudioBase64")
    message: str

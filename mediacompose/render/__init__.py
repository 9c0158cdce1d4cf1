from mediacompose.render.composer import Clip, MediaComposer, build_trim_concat_filter
from mediacompose.render.engine import EngineResult, FFmpegEngine

__all__ = [
    "Clip",
    "EngineResult",
    "FFmpegEngine",
    "MediaComposer",
    "build_trim_concat_filter",
]

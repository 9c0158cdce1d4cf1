from mediacompose.models.base import Base
from mediacompose.models.composition import CompositionStatus, VideoComposition

__all__ = [
    "Base",
    "CompositionStatus",
    "VideoComposition",
]

"""Segment normalization for sequential compositions.

Turns the raw ``data`` entries of a sequential request into typed, ordered
segments:

- validates required fields and the integer ordering key
- decodes base64 payloads, stripping an optional ``data:<mime>;<enc>,`` prefix
- picks a file extension from the prefix's MIME subtype (allowlisted)
- sorts by ordering key, keeping submission order for ties
"""

import base64
import binascii
import logging
import re
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from mediacompose.exceptions import SegmentProcessingError, ValidationError

logger = logging.getLogger(__name__)


class SegmentKind(str, Enum):
    VIDEO = "video"
    NARRATION = "narration"


# Wire names accepted for each kind
KIND_ALIASES: dict[str, SegmentKind] = {
    "video": SegmentKind.VIDEO,
    "tts": SegmentKind.NARRATION,
    "narration": SegmentKind.NARRATION,
}

DEFAULT_EXTENSIONS: dict[SegmentKind, str] = {
    SegmentKind.VIDEO: "mp4",
    SegmentKind.NARRATION: "mp3",
}

# MIME subtype -> file extension
SUBTYPE_EXTENSIONS: dict[str, str] = {
    # Containers
    "mp4": "mp4",
    "quicktime": "mov",
    "webm": "webm",
    "x-matroska": "mkv",
    # Audio
    "mpeg": "mp3",
    "mp3": "mp3",
    "wav": "wav",
    "x-wav": "wav",
    "wave": "wav",
    "ogg": "ogg",
    "aac": "aac",
    "x-m4a": "m4a",
    "mp4a-latm": "m4a",
}

REQUIRED_FIELDS = ("id", "type", "base_64")

_DATA_URL_PREFIX = re.compile(r"^data:(?P<mime>[^;,]*)(?:;[^,]*)?,")


@dataclass(frozen=True)
class Segment:
    """One submitted unit of media."""

    order_key: int
    kind: SegmentKind
    payload: bytes
    extension: str
    transcript: str | None = None

    @property
    def is_video(self) -> bool:
        return self.kind is SegmentKind.VIDEO


@dataclass(frozen=True)
class DecodedPayload:
    data: bytes
    mime_type: str | None = None


def strip_data_url(encoded: str) -> tuple[str, str | None]:
    """Split an optional ``data:<mime>;<enc>,`` prefix from a base64 string.

    Returns:
        Tuple of (base64 body, mime type or None)
    """
    match = _DATA_URL_PREFIX.match(encoded)
    if not match:
        return encoded, None
    mime = match.group("mime").strip().lower() or None
    return encoded[match.end():], mime


def decode_payload(encoded: str) -> DecodedPayload:
    """Decode a (possibly data-URL prefixed) base64 payload.

    Raises:
        SegmentProcessingError: If the body is not valid base64 or is empty
    """
    body, mime = strip_data_url(encoded.strip())
    # Tolerate line-wrapped base64
    body = "".join(body.split())
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SegmentProcessingError(f"Invalid base64 payload: {e}") from e
    if not data:
        raise SegmentProcessingError("Decoded payload is empty")
    return DecodedPayload(data=data, mime_type=mime)


def extension_for(mime_type: str | None, default: str) -> str:
    """Choose a file extension for a MIME type, falling back to ``default``."""
    if not mime_type or "/" not in mime_type:
        return default
    subtype = mime_type.split("/", 1)[1]
    return SUBTYPE_EXTENSIONS.get(subtype, default)


def _parse_order_key(value: Any, index: int) -> int:
    # bool is an int subclass but never a valid ordering key
    if isinstance(value, bool):
        raise ValidationError(f"Segment {index}: 'id' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"Segment {index}: 'id' must be an integer")


def normalize_segments(raw_segments: Iterable[Mapping[str, Any]] | None) -> list[Segment]:
    """Validate, decode and order raw segment descriptions.

    Args:
        raw_segments: Entries shaped like ``{"id", "type", "base_64", "content"?}``

    Returns:
        Segments sorted by order key ascending (stable)

    Raises:
        ValidationError: Empty collection, missing field or non-integer id
        SegmentProcessingError: A payload cannot be decoded
    """
    entries = list(raw_segments or [])
    if not entries:
        raise ValidationError("No segments provided", code="NO_SEGMENTS")

    # Validate everything before decoding anything
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise ValidationError(f"Segment {index} must be an object")
        missing = [name for name in REQUIRED_FIELDS if entry.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Segment {index} is missing required field(s): {', '.join(missing)}")

    segments: list[Segment] = []
    for index, entry in enumerate(entries):
        order_key = _parse_order_key(entry["id"], index)
        kind_name = str(entry["type"]).strip().lower()
        kind = KIND_ALIASES.get(kind_name)
        if kind is None:
            logger.warning(f"[SEGMENTS] Unknown segment type '{entry['type']}' (id={order_key}), skipping")
            continue

        try:
            decoded = decode_payload(str(entry["base_64"]))
        except SegmentProcessingError as e:
            raise SegmentProcessingError(
                f"Segment {order_key} ({kind_name}): {e.message}", order_key=order_key
            ) from e

        transcript = entry.get("content")
        segments.append(
            Segment(
                order_key=order_key,
                kind=kind,
                payload=decoded.data,
                extension=extension_for(decoded.mime_type, DEFAULT_EXTENSIONS[kind]),
                transcript=str(transcript) if transcript is not None else None,
            )
        )

    # sorted() is stable: equal keys keep submission order
    return sorted(segments, key=lambda segment: segment.order_key)


def materialize_segment(segment: Segment, directory: Path) -> Path:
    """Write a segment's payload to a uniquely named file in ``directory``."""
    prefix = "video" if segment.is_video else "audio"
    path = Path(directory) / f"{prefix}_{segment.order_key}_{uuid.uuid4().hex}.{segment.extension}"
    try:
        path.write_bytes(segment.payload)
    except OSError as e:
        raise SegmentProcessingError(
            f"Could not write segment {segment.order_key}: {e}", order_key=segment.order_key
        ) from e
    return path

"""Flatten a timeline composition request into trim/concat clips."""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from mediacompose.exceptions import SegmentProcessingError, ValidationError
from mediacompose.render.composer import Clip
from mediacompose.schemas.composition import Asset, GlobalSettings, TimelineEntry
from mediacompose.services.segment_normalizer import decode_payload, extension_for

logger = logging.getLogger(__name__)

# Asset kinds that contribute clips; text and image need an overlay pass
CLIP_ASSET_TYPES = ("video", "audio")


@dataclass
class FlattenedTimeline:
    clips: list[Clip] = field(default_factory=list)
    output_format: str = "mp4"


def _ms_to_seconds(value: float) -> float:
    return value / 1000


def _override_ms(entry: TimelineEntry, key: str, default: float) -> float:
    if not entry.override or entry.override.get(key) is None:
        return default
    value = entry.override[key]
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Timeline override {key} for asset {entry.asset_id} is not a number: {value!r}"
        ) from e


def _resolve_source(asset: Asset, work_dir: Path | None) -> str | None:
    if asset.source.url:
        return asset.source.url
    if asset.source.data_base64:
        if work_dir is None:
            logger.warning(f"[COMPOSE] Asset {asset.id} has inline data but no work dir, skipping")
            return None
        decoded = decode_payload(asset.source.data_base64)
        default_ext = "mp4" if asset.type == "video" else "mp3"
        ext = extension_for(decoded.mime_type, default_ext)
        path = Path(work_dir) / f"asset_{uuid.uuid4().hex}.{ext}"
        try:
            path.write_bytes(decoded.data)
        except OSError as e:
            raise SegmentProcessingError(f"Could not write asset {asset.id}: {e}") from e
        return str(path)
    return None


def flatten_timeline(
    assets: Sequence[Asset],
    timeline: Sequence[TimelineEntry],
    global_settings: GlobalSettings | None = None,
    work_dir: Path | None = None,
) -> FlattenedTimeline:
    """Resolve timeline entries against assets, in start-time order.

    Entries referencing unknown assets, non-media assets, or assets without a
    usable source are skipped. Inline ``dataBase64`` sources are written into
    ``work_dir``.

    Raises:
        SegmentProcessingError: Inline asset data is not valid base64 or
            could not be written
        ValidationError: A timeline override is not numeric
    """
    assets_by_id = {asset.id: asset for asset in assets}
    result = FlattenedTimeline(
        output_format=global_settings.output_format if global_settings else "mp4"
    )

    for entry in sorted(timeline, key=lambda item: item.start_time):
        asset = assets_by_id.get(entry.asset_id)
        if asset is None:
            logger.warning(f"[COMPOSE] Asset not found: {entry.asset_id}, skipping")
            continue
        if asset.type not in CLIP_ASSET_TYPES:
            logger.info(f"[COMPOSE] Ignoring {asset.type} asset {asset.id}")
            continue

        source = _resolve_source(asset, work_dir)
        if source is None:
            logger.warning(f"[COMPOSE] Asset {asset.id} has no source url or data, skipping")
            continue

        start_s = _ms_to_seconds(_override_ms(entry, "startTrim", asset.aspecs.start_trim))
        duration_s = _ms_to_seconds(_override_ms(entry, "duration", asset.aspecs.duration))
        result.clips.append(Clip(source=source, start_seconds=start_s, duration_seconds=duration_s))
        logger.info(
            f"[COMPOSE] Clip added: {asset.type} src={source} start={start_s:g}s duration={duration_s:g}s"
        )

    return result

"""Tests for timeline flattening."""

import base64

import pytest

from mediacompose.exceptions import SegmentProcessingError, ValidationError
from mediacompose.schemas.composition import ComposeRequest
from mediacompose.services.timeline_flattener import flatten_timeline


def build_request(assets, timeline, global_settings=None) -> ComposeRequest:
    body = {"assets": assets, "timeline": timeline}
    if global_settings is not None:
        body["globalSettings"] = global_settings
    return ComposeRequest.model_validate(body)


def asset(asset_id, asset_type="video", url=None, start_trim=0, duration=1000, **source):
    src = dict(source)
    if url:
        src["url"] = url
    return {
        "id": asset_id,
        "type": asset_type,
        "source": src,
        "aspecs": {"startTrim": start_trim, "duration": duration},
    }


class TestFlattenTimeline:
    def test_sorted_by_start_time_and_converted_to_seconds(self):
        request = build_request(
            [
                asset("intro", url="https://cdn.example/intro.mp4", start_trim=500, duration=2000),
                asset("outro", url="https://cdn.example/outro.mp4", duration=1500),
            ],
            [{"assetId": "outro", "startTime": 2000}, {"assetId": "intro", "startTime": 0}],
        )

        result = flatten_timeline(request.assets, request.timeline, request.global_settings)

        assert [clip.source for clip in result.clips] == [
            "https://cdn.example/intro.mp4",
            "https://cdn.example/outro.mp4",
        ]
        assert result.clips[0].start_seconds == 0.5
        assert result.clips[0].duration_seconds == 2.0
        assert result.output_format == "mp4"

    def test_equal_start_times_keep_order(self):
        request = build_request(
            [asset("a", url="a.mp4"), asset("b", url="b.mp4")],
            [{"assetId": "b", "startTime": 0}, {"assetId": "a", "startTime": 0}],
        )
        result = flatten_timeline(request.assets, request.timeline)
        assert [clip.source for clip in result.clips] == ["b.mp4", "a.mp4"]

    def test_missing_asset_is_skipped(self):
        request = build_request(
            [asset("a", url="a.mp4")],
            [{"assetId": "ghost", "startTime": 0}, {"assetId": "a", "startTime": 1}],
        )
        result = flatten_timeline(request.assets, request.timeline)
        assert [clip.source for clip in result.clips] == ["a.mp4"]

    def test_text_and_image_assets_are_ignored(self):
        request = build_request(
            [
                asset("title", asset_type="text", content="Hello"),
                asset("logo", asset_type="image", url="logo.png"),
                asset("music", asset_type="audio", url="music.mp3"),
            ],
            [
                {"assetId": "title", "startTime": 0},
                {"assetId": "logo", "startTime": 0},
                {"assetId": "music", "startTime": 0},
            ],
        )
        result = flatten_timeline(request.assets, request.timeline)
        assert [clip.source for clip in result.clips] == ["music.mp3"]

    def test_asset_without_source_is_skipped(self):
        request = build_request([asset("a")], [{"assetId": "a", "startTime": 0}])
        assert flatten_timeline(request.assets, request.timeline).clips == []

    def test_inline_data_written_to_work_dir(self, tmp_path):
        data = base64.b64encode(b"fake-mp4").decode()
        request = build_request(
            [asset("a", dataBase64=f"data:video/quicktime;base64,{data}")],
            [{"assetId": "a", "startTime": 0}],
        )

        result = flatten_timeline(request.assets, request.timeline, work_dir=tmp_path)

        (clip,) = result.clips
        assert clip.source.endswith(".mov")
        assert clip.source.startswith(str(tmp_path))
        with open(clip.source, "rb") as f:
            assert f.read() == b"fake-mp4"

    def test_invalid_inline_data(self, tmp_path):
        request = build_request(
            [asset("a", dataBase64="%%%")],
            [{"assetId": "a", "startTime": 0}],
        )
        with pytest.raises(SegmentProcessingError):
            flatten_timeline(request.assets, request.timeline, work_dir=tmp_path)

    def test_override_replaces_trim(self):
        request = build_request(
            [asset("a", url="a.mp4", start_trim=0, duration=4000)],
            [{"assetId": "a", "startTime": 0, "override": {"startTrim": 1000, "duration": 2000}}],
        )
        (clip,) = flatten_timeline(request.assets, request.timeline).clips
        assert (clip.start_seconds, clip.duration_seconds) == (1.0, 2.0)

    def test_output_format_from_global_settings(self):
        request = build_request(
            [asset("a", url="a.mp4")],
            [{"assetId": "a", "startTime": 0}],
            {"outputFormat": "mov"},
        )
        result = flatten_timeline(request.assets, request.timeline, request.global_settings)
        assert result.output_format == "mov"

    def test_non_numeric_override_rejected(self):
        request = build_request(
            [asset("a", url="a.mp4")],
            [{"assetId": "a", "startTime": 0, "override": {"startTrim": "soon"}}],
        )
        with pytest.raises(ValidationError) as exc_info:
            flatten_timeline(request.assets, request.timeline)
        assert "startTrim" in exc_info.value.message

    def test_unwritable_work_dir(self, tmp_path):
        data = base64.b64encode(b"fake-mp4").decode()
        request = build_request(
            [asset("a", dataBase64=data)],
            [{"assetId": "a", "startTime": 0}],
        )
        with pytest.raises(SegmentProcessingError):
            flatten_timeline(request.assets, request.timeline, work_dir=tmp_path / "missing")

    def test_effects_object_accepted(self):
        body = asset("a", url="a.mp4", duration=2000)
        body["aspecs"]["effects"] = {
            "transitionIn": {"type": "fade", "duration": 1},
            "transitionOut": None,
            "animation": "slide",
            "speed": 1.5,
        }
        request = build_request([body], [{"assetId": "a", "startTime": 0}])

        assert request.assets[0].aspecs.effects["transitionIn"] == {"type": "fade", "duration": 1}
        assert len(flatten_timeline(request.assets, request.timeline).clips) == 1

"""
Tests for ffprobe output parsing.

Test cases:
1. Duration, dimensions and codecs
2. Files without audio / without video
3. Invalid output
"""

import json

import pytest

from mediamux.utils.media_info import parse_probe_output, probe_args


def _probe(format_info: dict, streams: list[dict]) -> str:
    return json.dumps({"format": format_info, "streams": streams})


class TestParseProbeOutput:
    """Parse ffprobe -show_format -show_streams JSON."""

    def test_video_with_audio(self):
        info = parse_probe_output(
            _probe(
                {"duration": "50.7", "format_name": "mov,mp4,m4a,3gp", "size": "6500000"},
                [
                    {"codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080, "r_frame_rate": "30000/1001"},
                    {"codec_type": "audio", "codec_name": "aac", "sample_rate": "48000", "channels": 1},
                ],
            )
        )

        assert info.duration_s == 50.7
        assert info.dimensions == (1920, 1080)
        assert info.fps == 29.97
        assert info.format_name == "mov"
        assert info.size_bytes == 6500000
        assert info.video_codec == "h264"
        assert info.audio_codec == "aac"
        assert info.sample_rate == 48000
        assert info.channels == 1
        assert info.has_video and info.has_audio

    def test_video_without_audio(self):
        info = parse_probe_output(
            _probe({"duration": "100.0"}, [{"codec_type": "video", "width": 1280, "height": 720}])
        )

        assert info.has_video is True
        assert info.has_audio is False
        assert info.audio_codec is None

    def test_audio_only_uses_stream_duration(self):
        info = parse_probe_output(
            _probe({}, [{"codec_type": "audio", "codec_name": "mp3", "duration": "3.25"}])
        )

        assert info.duration_s == 3.25
        assert info.dimensions is None
        assert info.has_video is False

    def test_only_first_streams_count(self):
        info = parse_probe_output(
            _probe(
                {},
                [
                    {"codec_type": "video", "width": 640, "height": 360},
                    {"codec_type": "video", "width": 1920, "height": 1080},
                ],
            )
        )

        assert info.dimensions == (640, 360)

    def test_unavailable_values_are_none(self):
        info = parse_probe_output(
            _probe(
                {"format_name": "matroska,webm", "size": "N/A"},
                [
                    {"codec_type": "video", "width": 1280, "height": 720, "duration": "N/A"},
                    {"codec_type": "audio", "codec_name": "opus", "sample_rate": "N/A", "duration": "N/A"},
                ],
            )
        )

        assert info.duration_s is None
        assert info.size_bytes is None
        assert info.sample_rate is None
        assert info.dimensions == (1280, 720)
        assert info.audio_codec == "opus"

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            parse_probe_output("not json")


class TestProbeArgs:
    def test_json_output(self):
        args = probe_args("clip.mp4")

        assert args[-1] == "clip.mp4"
        assert "-show_streams" in args
        assert args[args.index("-print_format") + 1] == "json"

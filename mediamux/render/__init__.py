from mediamux.render.audio_mixer import build_audio_composition
from mediamux.render.engine import TranscodeCommand, TranscodingEngine
from mediamux.render.graph import FilterGraph, FilterNode
from mediamux.render.plan import CompositionPlan
from mediamux.render.timeline import Layer, TimedSource
from mediamux.render.track_extractor import TrackExtractor
from mediamux.render.video_compositor import build_video_composition

__all__ = [
    "TranscodingEngine",
    "TranscodeCommand",
    "FilterGraph",
    "FilterNode",
    "CompositionPlan",
    "Layer",
    "TimedSource",
    "TrackExtractor",
    "build_video_composition",
    "build_audio_composition",
]

"""Timeline primitives shared by the composition builders."""

from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from mediamux.exceptions import InputValidationError
from mediamux.utils.media_info import MediaInfo


@dataclass(frozen=True)
class TimedSource:
    """A media source placed on the output timeline.

    ``source`` is a URL before resolution and a local path afterwards.
    """

    source: str
    start_s: float = 0.0
    volume_db: float = 0.0

    @property
    def start_ms(self) -> int:
        return int(round(self.start_s * 1000))


@dataclass
class Layer:
    """An ordered group of timed sources contributing to one output track."""

    sources: list[TimedSource] = field(default_factory=list)

    @classmethod
    def from_lists(
        cls,
        files: Sequence[str],
        starting_timestamps: Optional[Sequence[float]] = None,
        decibels: Optional[Sequence[float]] = None,
    ) -> "Layer":
        """
        Build a layer from the parallel arrays of the HTTP payload.

        Missing per-index offsets/gains default to 0.

        Raises:
            InputValidationError: If ``files`` is empty or a parallel array is longer than it
        """
        if not files:
            raise InputValidationError("Each layer must have a files array with at least one URL")
        timestamps = list(starting_timestamps or [])
        gains = list(decibels or [])
        if len(timestamps) > len(files):
            raise InputValidationError("startingTimestamps has more entries than files")
        if len(gains) > len(files):
            raise InputValidationError("decibels has more entries than files")

        sources = []
        for index, source in enumerate(files):
            start = timestamps[index] if index < len(timestamps) else 0
            gain = gains[index] if index < len(gains) else 0
            if start is not None and start < 0:
                raise InputValidationError(f"startingTimestamps[{index}] must not be negative")
            sources.append(
                TimedSource(source=source, start_s=float(start or 0), volume_db=float(gain or 0))
            )
        return cls(sources=sources)

    def with_sources(self, sources: list[str]) -> "Layer":
        """Copy of this layer with each source replaced (same order and timing)."""
        if len(sources) != len(self.sources):
            raise ValueError("source count mismatch")
        return Layer(
            sources=[replace(ts, source=src) for ts, src in zip(self.sources, sources)]
        )


def flatten_layers(layers: Sequence[Layer]) -> list[TimedSource]:
    """Layer order first, then order within each layer."""
    return [source for layer in layers for source in layer.sources]


def timeline_duration(
    sources: Sequence[TimedSource],
    probes: Sequence[Optional[MediaInfo]],
) -> float | None:
    """Latest ``start + duration`` over all sources, or None if any duration is unknown."""
    if not sources:
        return None
    end = 0.0
    for source, info in zip(sources, probes):
        if info is None or info.duration_s is None:
            return None
        end = max(end, source.start_s + info.duration_s)
    return end

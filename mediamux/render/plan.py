"""Composition plan handed from the builders to the engine."""

from dataclasses import dataclass, field

from mediamux.render.engine import TranscodeCommand
from mediamux.render.graph import FilterGraph
from mediamux.render.timeline import TimedSource


@dataclass
class CompositionPlan:
    """How a set of inputs combines into one output stream.

    ``graph`` is None when no filtering is needed (single input pass-through).
    """

    inputs: list[TimedSource]
    graph: FilterGraph | None = None
    output_label: str | None = None
    canvas_width: int | None = None
    canvas_height: int | None = None
    duration_s: float | None = None
    extra_maps: list[str] = field(default_factory=list)

    @property
    def is_passthrough(self) -> bool:
        return self.graph is None

    @property
    def input_paths(self) -> list[str]:
        return [source.source for source in self.inputs]

    @property
    def filter_expression(self) -> str | None:
        return self.graph.serialize() if self.graph is not None else None

    def map_args(self) -> list[str]:
        args: list[str] = []
        if self.output_label:
            args.extend(["-map", f"[{self.output_label}]"])
        for stream in self.extra_maps:
            args.extend(["-map", stream])
        return args

    def to_command(self, output_path: str, output_args: list[str]) -> TranscodeCommand:
        """Engine invocation producing ``output_path`` from this plan."""
        return TranscodeCommand(
            inputs=self.input_paths,
            output_path=output_path,
            filter_complex=self.filter_expression,
            output_args=[*self.map_args(), *output_args],
        )

"""Multi-layer video compositing plan.

Every video source of every layer is flattened (layer order, then clip
order) into a single input list. The first input is the base: it fixes the
canvas size and runs for the whole timeline. Each later input is scaled and
letterboxed onto the canvas, shifted to its start offset, and overlaid on
the running composite from that offset onward. Once revealed an overlay
stays on screen; after its own last frame that frame is held.
"""

import logging
from typing import Optional, Sequence

from mediamux.exceptions import CompositionError
from mediamux.render.graph import FilterGraph
from mediamux.render.plan import CompositionPlan
from mediamux.render.timeline import Layer, flatten_layers, timeline_duration
from mediamux.utils.media_info import MediaInfo

logger = logging.getLogger(__name__)

DEFAULT_CANVAS = (1920, 1080)


def _fit_to_canvas(
    graph: FilterGraph,
    index: int,
    width: int,
    height: int,
    start_s: float,
) -> str:
    """Scale (aspect-preserving), centre-pad and time-shift input ``index``."""
    label = graph.add(
        "scale", [f"{index}:v"], f"s{index}",
        width, height, force_original_aspect_ratio="decrease",
    )
    label = graph.add(
        "pad", [label], f"p{index}",
        width, height, "(ow-iw)/2", "(oh-ih)/2",
    )
    setpts = "PTS-STARTPTS"
    if start_s > 0:
        setpts += f"+{start_s:g}/TB"
    return graph.add("setpts", [label], f"v{index}", setpts)


def build_video_composition(
    layers: Sequence[Layer],
    probes: Optional[Sequence[Optional[MediaInfo]]] = None,
    *,
    default_canvas: tuple[int, int] = DEFAULT_CANVAS,
) -> CompositionPlan:
    """
    Build the composition plan for the video layers.

    Args:
        layers: Video layers whose sources are local paths
        probes: Probe results aligned with the flattened sources (None entries allowed)
        default_canvas: Canvas size used when the base input has no dimensions

    Returns:
        CompositionPlan; pass-through (no graph) when there is exactly one input

    Raises:
        CompositionError: If the layers contain no sources
    """
    sources = flatten_layers(layers)
    if not sources:
        raise CompositionError("No video files provided")

    probes = list(probes) if probes is not None else []
    probes.extend([None] * (len(sources) - len(probes)))

    base_info = probes[0]
    width, height = (base_info.dimensions if base_info else None) or default_canvas
    total = timeline_duration(sources, probes)

    if len(sources) == 1:
        return CompositionPlan(
            inputs=sources,
            canvas_width=width,
            canvas_height=height,
            duration_s=total,
        )

    graph = FilterGraph()

    # Base layer
    base_label = _fit_to_canvas(graph, 0, width, height, 0)
    base = sources[0]
    base_params = {}
    if base.start_s > 0:
        base_params["start_duration"] = base.start_s
    if total is not None and base_info is not None and base_info.duration_s is not None:
        hold = total - (base.start_s + base_info.duration_s)
        if hold > 0:
            base_params.update(stop_mode="clone", stop_duration=hold)
    if base_params:
        base_label = graph.add("tpad", [base_label], "base", **base_params)

    current = base_label
    for index in range(1, len(sources)):
        start_s = sources[index].start_s
        overlay = _fit_to_canvas(graph, index, width, height, start_s)
        current = graph.add(
            "overlay", [current, overlay], f"ov{index}",
            0, 0, enable=f"gte(t,{start_s:g})", eof_action="repeat",
        )

    graph.add("format", [current], "vout", "yuv420p")

    logger.info(
        f"[VIDEO COMPOSE] {len(sources)} inputs on {width}x{height} canvas, "
        f"timeline={total if total is not None else 'unknown'}s"
    )

    return CompositionPlan(
        inputs=sources,
        graph=graph,
        output_label="vout",
        canvas_width=width,
        canvas_height=height,
        duration_s=total,
        # Convenience passthrough of the base input's audio, if it has any
        extra_maps=["0:a?"],
    )

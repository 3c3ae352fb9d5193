"""
Audio mixing plan.

This module handles:
- Flattening audio layers into one ordered source list
- Per-source start delay and gain (dB)
- Mixing everything into a single stream (longest input sets the length)
"""

import logging
from typing import Sequence

from mediamux.render.graph import FilterGraph
from mediamux.render.plan import CompositionPlan
from mediamux.render.timeline import Layer, flatten_layers

logger = logging.getLogger(__name__)

DEFAULT_DROPOUT_TRANSITION_S = 2.0


def build_audio_composition(
    layers: Sequence[Layer],
    total_duration_s: float,
    *,
    dropout_transition_s: float = DEFAULT_DROPOUT_TRANSITION_S,
) -> CompositionPlan | None:
    """
    Build the mixing plan for the audio layers.

    Args:
        layers: Audio layers whose sources are local paths
        total_duration_s: Length of the accompanying video (or the fallback length)
        dropout_transition_s: amix renormalisation time when an input ends

    Returns:
        CompositionPlan, or None if there is nothing to mix
    """
    sources = flatten_layers(layers)
    if not sources:
        return None

    graph = FilterGraph()
    mix_inputs = []
    for index, source in enumerate(sources):
        label = graph.add("adelay", [f"{index}:a"], f"d{index}", delays=source.start_ms, all=1)
        label = graph.add("volume", [label], f"a{index}", volume=f"{source.volume_db:g}dB")
        mix_inputs.append(label)

    graph.add(
        "amix", mix_inputs, "aout",
        inputs=len(mix_inputs),
        duration="longest",
        dropout_transition=dropout_transition_s,
    )

    logger.info(f"[AUDIO MIX] {len(sources)} sources, timeline={total_duration_s:g}s")

    return CompositionPlan(
        inputs=sources,
        graph=graph,
        output_label="aout",
        duration_s=total_duration_s,
    )

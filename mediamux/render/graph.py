"""Structured FFmpeg filter graph.

Builders assemble an ordered list of ``FilterNode`` objects and only turn
them into ffmpeg's ``-filter_complex`` text at the very end, which keeps the
builders testable without running ffmpeg.
"""

from dataclasses import dataclass, field
from typing import Any

# Characters that must be quoted inside a filter option value
_SPECIAL_CHARS = set(",;[]:' ")


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        text = f"{value:.3f}".rstrip("0").rstrip(".")
        return text or "0"
    text = str(value)
    if any(ch in _SPECIAL_CHARS for ch in text):
        return "'" + text.replace("'", r"\'") + "'"
    return text


@dataclass
class FilterNode:
    """One filter application: ``[inputs]operation=params[output]``.

    ``args`` are positional option values, ``params`` named ones; both keep
    insertion order.
    """

    operation: str
    inputs: list[str] = field(default_factory=list)
    output: str | None = None
    args: list[Any] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)

    def to_filter(self) -> str:
        options = [_format_value(a) for a in self.args]
        options.extend(f"{key}={_format_value(val)}" for key, val in self.params.items())
        in_labels = "".join(f"[{label}]" for label in self.inputs)
        out_label = f"[{self.output}]" if self.output else ""
        body = self.operation
        if options:
            body += "=" + ":".join(options)
        return f"{in_labels}{body}{out_label}"


@dataclass
class FilterGraph:
    """Ordered collection of filter nodes."""

    nodes: list[FilterNode] = field(default_factory=list)

    def add(
        self,
        operation: str,
        inputs: list[str],
        output: str,
        /,
        *args: Any,
        **params: Any,
    ) -> str:
        """Append a node and return its output label for chaining."""
        self.nodes.append(
            FilterNode(
                operation=operation,
                inputs=list(inputs),
                output=output,
                args=list(args),
                params=dict(params),
            )
        )
        return output

    def find(self, operation: str) -> list[FilterNode]:
        return [node for node in self.nodes if node.operation == operation]

    def labels(self) -> list[str]:
        return [node.output for node in self.nodes if node.output]

    def serialize(self) -> str:
        """Render as an ffmpeg ``-filter_complex`` expression."""
        return ";".join(node.to_filter() for node in self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

"""Ordered draw operations for one map."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from .config import RenderStyleConfig
from .models import MapLabel


class LayerKind(str, Enum):
    FILL = "fill"
    OUTLINE = "outline"
    LABELS = "labels"


class LayerOrderError(ValueError):
    """Draw operations are not in a renderable order."""


@dataclass(frozen=True, slots=True)
class LayerStyle:
    color: str | None = None
    line_width: float = 0.0
    column: str | None = None
    cmap: str | None = None
    font_family: str | None = None
    font_size: float | None = None


@dataclass(frozen=True, slots=True)
class DrawOp:
    """One layer; ops are drawn in list order, later ones on top."""

    name: str
    kind: LayerKind
    frame: Any = None
    style: LayerStyle = LayerStyle()
    labels: tuple[MapLabel, ...] = field(default_factory=tuple)


def build_layer_stack(
    *,
    neighbors: Any,
    primary: Any,
    marine: Any,
    labels: Sequence[MapLabel],
    style: RenderStyleConfig,
) -> tuple[DrawOp, ...]:
    """Neighbour fill, primary fill, marine fill, primary outline, then labels."""
    ops = (
        DrawOp(
            name="neighbors",
            kind=LayerKind.FILL,
            frame=neighbors,
            style=LayerStyle(color=style.neighbor_fill),
        ),
        DrawOp(
            name="primary",
            kind=LayerKind.FILL,
            frame=primary,
            style=LayerStyle(
                color=style.primary_fill,
                column=style.primary_fill_column,
                cmap=style.primary_cmap,
            ),
        ),
        DrawOp(
            name="marine",
            kind=LayerKind.FILL,
            frame=marine,
            style=LayerStyle(color=style.marine_fill),
        ),
        DrawOp(
            name="primary-outline",
            kind=LayerKind.OUTLINE,
            frame=primary,
            style=LayerStyle(color=style.outline_color, line_width=style.outline_width),
        ),
        DrawOp(
            name="labels",
            kind=LayerKind.LABELS,
            labels=tuple(labels),
            style=LayerStyle(
                color=style.label_color,
                font_family=style.font_family,
                font_size=style.font_size,
            ),
        ),
    )
    check_layer_order(ops)
    return ops


def check_layer_order(ops: Sequence[DrawOp]) -> None:
    """Labels come last and an outline is the top-most geometry layer."""
    seen_labels = False
    geometry_ops: list[DrawOp] = []
    for op in ops:
        if op.kind is LayerKind.LABELS:
            seen_labels = True
            continue
        if seen_labels:
            raise LayerOrderError(f"Layer '{op.name}' is drawn after labels")
        geometry_ops.append(op)
    if not any(op.kind is LayerKind.OUTLINE for op in geometry_ops):
        raise LayerOrderError("Layer stack has no outline layer")
    top = geometry_ops[-1]
    if top.kind is not LayerKind.OUTLINE:
        raise LayerOrderError(
            f"Top-most geometry layer must be an outline, found {top.kind.value} '{top.name}'"
        )

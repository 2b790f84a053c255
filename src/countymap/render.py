"""Static map rendering from an ordered layer stack."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from .config import RenderConfig
from .layers import DrawOp, LayerKind, check_layer_order
from .models import BoundingBox


_LOGGER = logging.getLogger("countymap.render")


@dataclass(frozen=True, slots=True)
class RenderRequest:
    ops: tuple[DrawOp, ...]
    extent: BoundingBox
    output_path: Path
    title: str | None = None
    geographic: bool = True


class MapRenderer:
    """Deterministic renderer for one static map image."""

    def __init__(self, cfg: RenderConfig) -> None:
        self.cfg = cfg

    def render(self, req: RenderRequest) -> Path:
        check_layer_order(req.ops)
        plt = _require_matplotlib()
        width_px = self.cfg.image.width_px
        height_px = self.cfg.image.height_px
        dpi = self.cfg.image.dpi

        fig, ax = plt.subplots(figsize=(width_px / dpi, height_px / dpi), dpi=dpi)
        try:
            _apply_background(fig=fig, ax=ax, background=self.cfg.image.background)
            for zorder, op in enumerate(req.ops, start=1):
                self._draw_op(ax=ax, op=op, zorder=zorder)

            view = req.extent.padded(self.cfg.extent.padding_ratio)
            _configure_axes(ax=ax, view=view, geographic=req.geographic)
            if req.title:
                ax.set_title(req.title)

            req.output_path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(
                req.output_path,
                dpi=dpi,
                format=self.cfg.image.format,
                bbox_inches="tight",
                transparent=self.cfg.image.background.casefold() == "transparent",
            )
            _LOGGER.info("Map written to %s", req.output_path)
            return req.output_path
        finally:
            plt.close(fig)

    def _draw_op(self, *, ax: Any, op: DrawOp, zorder: int) -> None:
        if op.kind is LayerKind.LABELS:
            _draw_labels(ax=ax, op=op, zorder=zorder)
            return
        if op.frame is None or len(op.frame) == 0:
            _LOGGER.debug("Layer '%s' is empty; skipped", op.name)
            return
        if op.kind is LayerKind.OUTLINE:
            op.frame.boundary.plot(
                ax=ax,
                color=op.style.color,
                linewidth=op.style.line_width,
                zorder=zorder,
            )
            return
        _draw_fill(ax=ax, op=op, zorder=zorder)


def _draw_fill(*, ax: Any, op: DrawOp, zorder: int) -> None:
    column = op.style.column
    if column is not None and column in op.frame.columns:
        op.frame.plot(
            ax=ax,
            column=column,
            cmap=op.style.cmap,
            edgecolor="none",
            linewidth=0,
            zorder=zorder,
        )
        return
    if column is not None:
        _LOGGER.warning(
            "Fill column '%s' missing from layer '%s'; using flat colour", column, op.name
        )
    op.frame.plot(ax=ax, color=op.style.color, edgecolor="none", linewidth=0, zorder=zorder)


def _draw_labels(*, ax: Any, op: DrawOp, zorder: int) -> None:
    for label in op.labels:
        ax.text(
            label.x,
            label.y,
            label.text,
            color=op.style.color,
            fontsize=op.style.font_size,
            family=op.style.font_family,
            ha="center",
            va="center",
            linespacing=0.95,
            clip_on=True,
            zorder=zorder,
        )


def _configure_axes(*, ax: Any, view: BoundingBox, geographic: bool) -> None:
    ax.set_xlim(view.minx, view.maxx)
    ax.set_ylim(view.miny, view.maxy)
    if geographic:
        # one degree of longitude shrinks with cos(latitude)
        mid_lat = (view.miny + view.maxy) / 2.0
        ax.set_aspect(1.0 / max(math.cos(math.radians(mid_lat)), 1e-6))
    else:
        ax.set_aspect("equal")
    ax.set_axis_off()


def _apply_background(*, fig: Any, ax: Any, background: str) -> None:
    if background.casefold() == "transparent":
        fig.patch.set_facecolor("white")
        fig.patch.set_alpha(0.0)
        ax.set_facecolor((1.0, 1.0, 1.0, 0.0))
    else:
        fig.patch.set_facecolor(background)
        ax.set_facecolor(background)


def layer_names(ops: Sequence[DrawOp]) -> list[str]:
    return [op.name for op in ops]


def _require_matplotlib() -> Any:
    try:
        import matplotlib

        matplotlib.use("Agg", force=False)
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for map rendering") from exc
    return plt

"""Label text, manual offset table, and label placement."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import pandas as pd
import yaml

from .models import LabelOffset, MapLabel


def wrap_name(name: str) -> str:
    """Break a display name onto two lines at its first space."""
    return name.replace(" ", "\n", 1)


def add_wrapped_names(frame: Any, name_field: str, *, column: str = "label_name") -> Any:
    if name_field not in frame.columns:
        cols = ", ".join(str(c) for c in frame.columns)
        raise ValueError(f"Name field '{name_field}' not found. Available columns: {cols}")
    out = frame.copy()
    out[column] = [
        wrap_name(value) if isinstance(value, str) else value for value in frame[name_field]
    ]
    return out


def load_label_offsets(path: Path) -> dict[str, LabelOffset]:
    """Load optional per-feature label offsets keyed by exact display name."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Expected mapping in {path}")

    offsets: dict[str, LabelOffset] = {}
    for name_raw, value in raw.items():
        if not isinstance(name_raw, str) or not name_raw.strip():
            raise ValueError(f"Label offset key must be a non-empty name in {path}")
        offsets[name_raw] = LabelOffset.from_value(value, f"{path.name}:{name_raw}")
    return offsets


def offset_for(offsets: Mapping[str, LabelOffset], name: str) -> LabelOffset:
    return offsets.get(name, LabelOffset.zero())


def build_labels(
    centroids: Any,
    *,
    name_field: str,
    text_field: str,
    offsets: Mapping[str, LabelOffset],
) -> tuple[MapLabel, ...]:
    """Place one label per centroid, nudged by its configured offset.

    ``name_field`` keys the offset lookup; ``text_field`` is what gets drawn.
    Rows without a point geometry are skipped.
    """
    for column in (name_field, text_field):
        if column not in centroids.columns:
            raise ValueError(f"Label column '{column}' not found in centroid frame")
    labels: list[MapLabel] = []
    for name, text, point in zip(
        centroids[name_field], centroids[text_field], centroids.geometry
    ):
        if point is None or point.is_empty or pd.isna(name):
            continue
        offset = offset_for(offsets, str(name))
        labels.append(
            MapLabel(
                name=str(name),
                text=str(text),
                x=float(point.x) + offset.dx,
                y=float(point.y) + offset.dy,
                offset=offset,
            )
        )
    return tuple(labels)


def unused_offset_names(offsets: Mapping[str, LabelOffset], names: Any) -> list[str]:
    present = {str(name) for name in names if not pd.isna(name)}
    return sorted(name for name in offsets if name not in present)

"""Geometry derivation and filtering over feature collections."""

from __future__ import annotations

from typing import Any, Iterable

import geopandas as gpd


def _require_column(frame: gpd.GeoDataFrame, column: str) -> None:
    if column not in frame.columns:
        cols = ", ".join(str(c) for c in frame.columns)
        raise ValueError(f"Column '{column}' not found. Available columns: {cols}")


def _area_weighted_centroid(geometry: Any) -> Any:
    if geometry is None or geometry.is_empty:
        return None
    return geometry.centroid


def derive_centroids(frame: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Return one centroid point per feature, attributes and index unchanged.

    Uses shapely's area-weighted centroid directly so that the result is the
    same for projected and geographic CRSs (GeoSeries.centroid warns on the
    latter). Missing or empty geometries map to a missing point.
    """
    points = [_area_weighted_centroid(geometry) for geometry in frame.geometry]
    out = frame.copy()
    out[frame.geometry.name] = gpd.GeoSeries(points, index=frame.index, crs=frame.crs)
    return out


def filter_regions(
    frame: gpd.GeoDataFrame,
    names: Iterable[str],
    *,
    name_field: str,
) -> gpd.GeoDataFrame:
    """Keep features whose ``name_field`` is one of ``names``, in original order."""
    _require_column(frame, name_field)
    wanted = set(names)
    return frame[frame[name_field].isin(wanted)].copy()


def missing_region_names(frame: gpd.GeoDataFrame, names: Iterable[str], *, name_field: str) -> list[str]:
    _require_column(frame, name_field)
    present = set(frame[name_field].dropna().astype(str))
    return sorted(set(names) - present)

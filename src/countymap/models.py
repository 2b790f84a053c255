"""Domain models shared across pipeline modules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence
from urllib.parse import urlencode


QUERY_FORMATS = ("json", "geojson")
_ALL_FIELDS = "*"


def _normalize_out_fields(out_fields: str | Sequence[str]) -> str:
    if isinstance(out_fields, str):
        raw = out_fields.strip()
        if not raw or raw.casefold() == "all":
            return _ALL_FIELDS
        return raw
    names = [str(name).strip() for name in out_fields if str(name).strip()]
    if not names:
        return _ALL_FIELDS
    return ",".join(names)


def build_query_url(
    layer_url: str,
    *,
    where: str = "1=1",
    out_fields: str | Sequence[str] = _ALL_FIELDS,
    out_sr: int = 4326,
    fmt: str = "geojson",
) -> str:
    """Compose an ArcGIS FeatureServer query URL.

    ``layer_url`` is the layer endpoint (``.../FeatureServer/0``); a trailing
    ``/query`` is tolerated.
    """
    chosen_fmt = fmt.strip().casefold()
    if chosen_fmt not in QUERY_FORMATS:
        raise ValueError(f"Unsupported query format '{fmt}'; expected one of {QUERY_FORMATS}")
    base = layer_url.rstrip("/")
    if not base.endswith("/query"):
        base = f"{base}/query"
    params = {
        "where": where,
        "outFields": _normalize_out_fields(out_fields),
        "outSR": int(out_sr),
        "f": chosen_fmt,
    }
    return f"{base}?{urlencode(params)}"


@dataclass(frozen=True, slots=True)
class LayerQuery:
    """One ArcGIS FeatureServer query."""

    layer_url: str
    where: str = "1=1"
    out_fields: tuple[str, ...] = (_ALL_FIELDS,)
    out_sr: int = 4326
    fmt: str = "geojson"
    page_size: int | None = None

    @property
    def query_endpoint(self) -> str:
        base = self.layer_url.rstrip("/")
        return base if base.endswith("/query") else f"{base}/query"

    def params(self, *, offset: int | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {
            "where": self.where,
            "outFields": _normalize_out_fields(self.out_fields),
            "outSR": self.out_sr,
            "f": self.fmt,
            "returnGeometry": "true",
        }
        if self.page_size is not None:
            params["resultOffset"] = offset or 0
            params["resultRecordCount"] = self.page_size
        elif offset:
            # server-sized pages: the server picks the batch length
            params["resultOffset"] = offset
        return params

    def to_url(self) -> str:
        return build_query_url(
            self.layer_url,
            where=self.where,
            out_fields=self.out_fields,
            out_sr=self.out_sr,
            fmt=self.fmt,
        )


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Axis-aligned extent in the collection's CRS units."""

    minx: float
    miny: float
    maxx: float
    maxy: float

    def __post_init__(self) -> None:
        if self.minx > self.maxx or self.miny > self.maxy:
            raise ValueError(f"Inverted bounding box: {self.as_tuple()}")

    @classmethod
    def from_frame(cls, frame: Any) -> BoundingBox:
        """Minimal box containing every geometry in a GeoDataFrame."""
        geometries = frame.geometry
        present = geometries[geometries.notna() & ~geometries.is_empty]
        if len(present) == 0:
            raise ValueError("Cannot compute bounding box of an empty feature collection")
        minx, miny, maxx, maxy = (float(v) for v in present.total_bounds)
        return cls(minx=minx, miny=miny, maxx=maxx, maxy=maxy)

    @property
    def width(self) -> float:
        return self.maxx - self.minx

    @property
    def height(self) -> float:
        return self.maxy - self.miny

    def padded(self, ratio: float) -> BoundingBox:
        if ratio < 0:
            raise ValueError("Padding ratio must be >= 0")
        pad_x = self.width * ratio
        pad_y = self.height * ratio
        return BoundingBox(
            minx=self.minx - pad_x,
            miny=self.miny - pad_y,
            maxx=self.maxx + pad_x,
            maxy=self.maxy + pad_y,
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.minx, self.miny, self.maxx, self.maxy)


@dataclass(frozen=True, slots=True)
class LabelOffset:
    """Manual label nudge in map units."""

    dx: float = 0.0
    dy: float = 0.0

    @classmethod
    def zero(cls) -> LabelOffset:
        return cls(0.0, 0.0)

    @classmethod
    def from_value(cls, value: Any, field_name: str) -> LabelOffset:
        if isinstance(value, Mapping):
            dx_raw = value.get("dx", 0.0)
            dy_raw = value.get("dy", 0.0)
        elif isinstance(value, (list, tuple)) and len(value) == 2:
            dx_raw, dy_raw = value
        else:
            raise ValueError(f"Expected [dx, dy] pair or mapping for '{field_name}'")
        for axis, raw in (("dx", dx_raw), ("dy", dy_raw)):
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise ValueError(f"Expected numeric {axis} for '{field_name}'")
        return cls(dx=float(dx_raw), dy=float(dy_raw))


@dataclass(frozen=True, slots=True)
class MapLabel:
    """Label text anchored at a point, offset already applied."""

    name: str
    text: str
    x: float
    y: float
    offset: LabelOffset = LabelOffset()


@dataclass(frozen=True, slots=True)
class RunManifest:
    """Run metadata written next to the rendered map."""

    generated_at_utc: str
    config_hash_sha256: str
    git_commit: str | None
    feature_counts: Mapping[str, int]
    artifacts: Mapping[str, str]

    @classmethod
    def create(
        cls,
        *,
        config_hash_sha256: str,
        git_commit: str | None,
        feature_counts: Mapping[str, int],
        artifacts: Mapping[str, str],
    ) -> RunManifest:
        now = datetime.now(timezone.utc).isoformat()
        return cls(
            generated_at_utc=now,
            config_hash_sha256=config_hash_sha256,
            git_commit=git_commit,
            feature_counts=feature_counts,
            artifacts=artifacts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at_utc": self.generated_at_utc,
            "config_hash_sha256": self.config_hash_sha256,
            "git_commit": self.git_commit,
            "feature_counts": dict(self.feature_counts),
            "artifacts": dict(self.artifacts),
        }

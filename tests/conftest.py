from __future__ import annotations

from pathlib import Path
from typing import Any

import geopandas as gpd
import pytest
import requests
import yaml
from shapely.geometry import box, mapping

WA_COUNTIES = (
    "Adams", "Asotin", "Benton", "Chelan", "Clallam", "Clark", "Columbia", "Cowlitz",
    "Douglas", "Ferry", "Franklin", "Garfield", "Grant", "Grays Harbor", "Island",
    "Jefferson", "King", "Kitsap", "Kittitas", "Klickitat", "Lewis", "Lincoln", "Mason",
    "Okanogan", "Pacific", "Pend Oreille", "Pierce", "San Juan", "Skagit", "Skamania",
    "Snohomish", "Spokane", "Stevens", "Thurston", "Wahkiakum", "Walla Walla", "Whatcom",
    "Whitman", "Yakima",
)

STATES = (
    ("Washington", "WA", (-124.8, 45.5, -116.9, 49.0)),
    ("Oregon", "OR", (-124.6, 41.9, -116.4, 46.3)),
    ("Idaho", "ID", (-117.3, 41.9, -111.0, 49.0)),
    ("Montana", "MT", (-116.1, 44.3, -104.0, 49.0)),
    ("California", "CA", (-124.5, 32.5, -114.1, 42.0)),
    ("Nevada", "NV", (-120.0, 35.0, -114.0, 42.0)),
    ("Utah", "UT", (-114.1, 37.0, -109.0, 42.0)),
    ("Wyoming", "WY", (-111.1, 41.0, -104.0, 45.0)),
)

COUNTY_URL = "https://example.test/arcgis/rest/services/Counties/FeatureServer/0"
STATE_URL = "https://example.test/arcgis/rest/services/States/FeatureServer/0"


def county_polygons() -> list[Any]:
    """39 adjacent 0.5 x 0.5 degree cells laid out over a WA-like extent."""
    cells = []
    for idx in range(len(WA_COUNTIES)):
        row, col = divmod(idx, 8)
        minx = -124.5 + col * 0.9
        miny = 45.6 + row * 0.65
        cells.append(box(minx, miny, minx + 0.5, miny + 0.5))
    return cells


@pytest.fixture()
def counties() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "JURISDICT_SYST_ID": [f"53{idx * 2 + 1:03d}" for idx in range(len(WA_COUNTIES))],
            "JURISDICT_LABEL_NM": list(WA_COUNTIES),
        },
        geometry=county_polygons(),
        crs="EPSG:4326",
    )


@pytest.fixture()
def states() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {
            "STATE_NAME": [name for name, _, _ in STATES],
            "STATE_ABBR": [abbr for _, abbr, _ in STATES],
        },
        geometry=[box(*bounds) for _, _, bounds in STATES],
        crs="EPSG:4326",
    )


def geojson_payload(frame: gpd.GeoDataFrame, **extra: Any) -> dict[str, Any]:
    attr_cols = [col for col in frame.columns if col != frame.geometry.name]
    features = []
    for _, row in frame.iterrows():
        features.append(
            {
                "type": "Feature",
                "properties": {col: row[col] for col in attr_cols},
                "geometry": mapping(row[frame.geometry.name]),
            }
        )
    payload: dict[str, Any] = {"type": "FeatureCollection", "features": features}
    payload.update(extra)
    return payload


class FakeResponse:
    def __init__(self, payload: Any = None, *, status_code: int = 200, text: str | None = None) -> None:
        self.payload = payload
        self.status_code = status_code
        self.text = text
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self) -> Any:
        if self.text is not None:
            raise ValueError(f"Expecting value: {self.text[:20]}")
        return self.payload

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """requests.Session stand-in: queued responses per URL, every call recorded."""

    def __init__(self, routes: dict[str, list[Any]] | None = None) -> None:
        self.routes: dict[str, list[Any]] = {url: list(items) for url, items in (routes or {}).items()}
        self.calls: list[tuple[str, dict[str, Any], Any]] = []
        self.headers: dict[str, str] = {}

    def add(self, url: str, *responses: Any) -> None:
        self.routes.setdefault(url, []).extend(responses)

    def get(self, url: str, *, params: Any = None, timeout: Any = None) -> FakeResponse:
        self.calls.append((url, dict(params or {}), timeout))
        queue = self.routes.get(url)
        if not queue:
            raise requests.ConnectionError(f"No route for {url}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, FakeResponse):
            return item
        return FakeResponse(item)


@pytest.fixture()
def fake_session() -> FakeSession:
    return FakeSession()


def write_config(
    root: Path,
    *,
    marine_path: str = "data/marine.geojson",
    overrides: dict[str, Any] | None = None,
) -> Path:
    raw: dict[str, Any] = {
        "project": {"title": "Test Counties", "output_image": "build/maps/test.png"},
        "sources": {
            "request": {"timeout_s": 5, "user_agent": "countymap-tests"},
            "primary": {
                "url": COUNTY_URL,
                "out_fields": ["JURISDICT_SYST_ID", "JURISDICT_LABEL_NM"],
                "name_field": "JURISDICT_LABEL_NM",
                "code_field": "JURISDICT_SYST_ID",
            },
            "neighbors": {
                "url": STATE_URL,
                "out_fields": ["STATE_NAME", "STATE_ABBR"],
                "name_field": "STATE_NAME",
                "keep": ["Idaho", "Oregon"],
            },
            "marine": {"path": marine_path},
        },
        "paths": {
            "label_offsets": "data/label_offsets.yaml",
            "build_root": "build",
            "manifests_dir": "build/manifests",
            "logs_dir": "build/logs",
        },
        "render": {
            "image": {
                "width_px": 400,
                "height_px": 300,
                "dpi": 100,
                "background": "white",
                "format": "png",
            },
            "extent": {"padding_ratio": 0.02},
            "style": {
                "neighbor_fill": "#e3e3e3",
                "primary_fill": "#cfe8c4",
                "marine_fill": "#a9cfe6",
                "outline_color": "#333333",
                "outline_width": 0.5,
                "label_color": "#111111",
                "font_family": "DejaVu Sans",
                "font_size": 4,
            },
        },
        "build": {"write_manifest": True},
    }
    for dotted, value in (overrides or {}).items():
        node = raw
        *parents, leaf = dotted.split(".")
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = value
    path = root / "config.yaml"
    path.write_text(yaml.safe_dump(raw, sort_keys=False), encoding="utf-8")
    return path


@pytest.fixture()
def marine_file(tmp_path: Path) -> Path:
    path = tmp_path / "data" / "marine.geojson"
    path.parent.mkdir(parents=True, exist_ok=True)
    marine = gpd.GeoDataFrame(
        {"NAME": ["Puget Sound"]},
        geometry=[box(-123.0, 47.0, -122.3, 48.2)],
        crs="EPSG:4326",
    )
    marine.to_file(path, driver="GeoJSON")
    return path

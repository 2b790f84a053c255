"""ArcGIS REST FeatureServer acquisition."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

import geopandas as gpd
import requests
from pyproj import CRS
from pyproj.exceptions import CRSError
from shapely.geometry import LinearRing, MultiPolygon, Point, Polygon

from .config import RequestConfig
from .models import LayerQuery


_LOGGER = logging.getLogger("countymap.arcgis")

# Upper bound on pages requested for one query.
_MAX_PAGES = 1000


class FetchError(RuntimeError):
    """A FeatureServer request failed or returned an unusable payload."""

    def __init__(self, url: str, cause: str | BaseException) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Fetch failed for {url}: {cause}")


class ArcGISClient:
    """Blocking FeatureServer client that returns GeoDataFrames."""

    def __init__(self, cfg: RequestConfig, *, session: Any | None = None) -> None:
        self.cfg = cfg
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": cfg.user_agent})
        self._session = session

    def fetch_features(self, query: LayerQuery) -> gpd.GeoDataFrame:
        """Run a layer query and return every feature in server order."""
        features: list[Mapping[str, Any]] = []
        esri_spatial_ref: Mapping[str, Any] | None = None
        offset = 0
        for page in range(_MAX_PAGES):
            payload = self._get_json(query.query_endpoint, params=query.params(offset=offset))
            batch = payload.get("features")
            if not isinstance(batch, list):
                raise FetchError(query.to_url(), "response has no 'features' array")
            if query.fmt == "json" and isinstance(payload.get("spatialReference"), Mapping):
                esri_spatial_ref = payload["spatialReference"]
            features.extend(batch)
            _LOGGER.debug(
                "Page %d of %s returned %d features", page + 1, query.query_endpoint, len(batch)
            )
            if not batch or not _exceeded_transfer_limit(payload):
                break
            if query.page_size is None:
                _LOGGER.debug(
                    "%s hit the server record limit; continuing at offset %d",
                    query.query_endpoint,
                    offset + len(batch),
                )
            # advance by what the server sent, which may be below the requested page size
            offset += len(batch)
        else:
            raise FetchError(query.to_url(), f"pagination did not finish after {_MAX_PAGES} pages")

        crs = _resolve_crs(query.out_sr, esri_spatial_ref)
        if query.fmt == "json":
            frame = _frame_from_esri_features(features, crs=crs, url=query.to_url())
        else:
            frame = _frame_from_geojson_features(features, crs=crs, url=query.to_url())
        _LOGGER.info("Fetched %d features from %s", len(frame), query.query_endpoint)
        return frame

    def fetch_layer_info(self, layer_url: str) -> dict[str, Any]:
        """Fetch FeatureServer layer metadata (name, geometry type, fields)."""
        base = layer_url.rstrip("/")
        if base.endswith("/query"):
            base = base[: -len("/query")]
        return self._get_json(base, params={"f": "json"})

    def _get_json(self, url: str, *, params: Mapping[str, Any]) -> dict[str, Any]:
        try:
            response = self._session.get(url, params=params, timeout=self.cfg.timeout_s)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(url, exc) from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(url, f"malformed JSON response ({exc})") from exc
        finally:
            response.close()
        if not isinstance(payload, dict):
            raise FetchError(url, "expected a JSON object at the top level")
        error = payload.get("error")
        if isinstance(error, Mapping):
            details = error.get("details") or []
            message = str(error.get("message", "unknown ArcGIS error"))
            if details:
                message = f"{message} ({'; '.join(str(item) for item in details)})"
            raise FetchError(url, f"ArcGIS error {error.get('code', '?')}: {message}")
        return payload


def _exceeded_transfer_limit(payload: Mapping[str, Any]) -> bool:
    if payload.get("exceededTransferLimit") is True:
        return True
    properties = payload.get("properties")
    return isinstance(properties, Mapping) and properties.get("exceededTransferLimit") is True


def _resolve_crs(out_sr: int, spatial_ref: Mapping[str, Any] | None) -> CRS:
    if spatial_ref is not None:
        wkid = spatial_ref.get("latestWkid") or spatial_ref.get("wkid")
        if isinstance(wkid, int):
            try:
                return CRS.from_epsg(wkid)
            except CRSError:
                return CRS.from_user_input(f"ESRI:{wkid}")
    return CRS.from_epsg(out_sr)


def _empty_frame(crs: CRS) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(columns=["geometry"], geometry="geometry", crs=crs)


def _frame_from_geojson_features(
    features: Sequence[Mapping[str, Any]],
    *,
    crs: CRS,
    url: str,
) -> gpd.GeoDataFrame:
    if not features:
        return _empty_frame(crs)
    try:
        frame = gpd.GeoDataFrame.from_features(list(features), crs=crs)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise FetchError(url, f"malformed GeoJSON feature ({exc})") from exc
    return frame


def _frame_from_esri_features(
    features: Sequence[Mapping[str, Any]],
    *,
    crs: CRS,
    url: str,
) -> gpd.GeoDataFrame:
    if not features:
        return _empty_frame(crs)
    records: list[dict[str, Any]] = []
    geometries: list[Any] = []
    for idx, feature in enumerate(features):
        if not isinstance(feature, Mapping):
            raise FetchError(url, f"feature {idx} is not an object")
        attributes = feature.get("attributes") or {}
        if not isinstance(attributes, Mapping):
            raise FetchError(url, f"feature {idx} has non-object attributes")
        records.append(dict(attributes))
        geometries.append(esri_geometry_to_shape(feature.get("geometry"), url=url))
    return gpd.GeoDataFrame(records, geometry=geometries, crs=crs)


def esri_geometry_to_shape(geometry: Any, *, url: str = "<esri-json>") -> Any:
    """Convert one Esri JSON geometry into a shapely geometry.

    Esri polygons list every ring flat: clockwise rings are shells and
    counter-clockwise rings are holes of the shell that contains them.
    """
    if geometry is None:
        return None
    if not isinstance(geometry, Mapping):
        raise FetchError(url, "geometry is not an object")
    if "rings" in geometry:
        return _rings_to_polygon(geometry["rings"], url=url)
    if "x" in geometry and "y" in geometry:
        if geometry["x"] is None or geometry["y"] is None:
            return None
        try:
            return Point(float(geometry["x"]), float(geometry["y"]))
        except (TypeError, ValueError) as exc:
            raise FetchError(url, f"malformed point ({exc})") from exc
    raise FetchError(url, f"unsupported Esri geometry keys: {sorted(geometry)}")


def _rings_to_polygon(rings: Any, *, url: str) -> Polygon | MultiPolygon | None:
    if not isinstance(rings, list):
        raise FetchError(url, "polygon 'rings' must be a list")
    shells: list[list[Any]] = []
    holes: list[Any] = []
    for idx, ring_coords in enumerate(rings):
        try:
            coords = [(float(pt[0]), float(pt[1])) for pt in ring_coords]
            if len(coords) < 3:
                continue
            ring = LinearRing(coords)
        except (TypeError, ValueError, IndexError) as exc:
            raise FetchError(url, f"malformed ring {idx} ({exc})") from exc
        if ring.is_ccw:
            holes.append(ring)
        else:
            shells.append([ring, []])

    if not shells:
        if not holes:
            return None
        # some servers emit counter-clockwise shells; treat them as shells
        shells = [[ring, []] for ring in holes]
        holes = []

    for hole in holes:
        probe = Polygon(hole).representative_point()
        owner = next((shell for shell in shells if Polygon(shell[0]).contains(probe)), None)
        if owner is None:
            shells.append([hole, []])
        else:
            owner[1].append(hole)

    polygons = [Polygon(shell, interiors) for shell, interiors in shells]
    if len(polygons) == 1:
        return polygons[0]
    return MultiPolygon(polygons)

from __future__ import annotations

import geopandas as gpd
import pytest
import requests

from conftest import COUNTY_URL, STATE_URL, FakeResponse, FakeSession, geojson_payload
from countymap.arcgis import ArcGISClient, FetchError, esri_geometry_to_shape
from countymap.config import RequestConfig
from countymap.models import LayerQuery

COUNTY_QUERY = f"{COUNTY_URL}/query"
STATE_QUERY = f"{STATE_URL}/query"


def _client(session: FakeSession) -> ArcGISClient:
    return ArcGISClient(RequestConfig(timeout_s=7, user_agent="tests"), session=session)


def test_fetch_geojson_features(fake_session: FakeSession, counties: gpd.GeoDataFrame) -> None:
    fake_session.add(COUNTY_QUERY, geojson_payload(counties))

    frame = _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL))

    assert len(frame) == 39
    assert list(frame["JURISDICT_LABEL_NM"]) == list(counties["JURISDICT_LABEL_NM"])
    assert frame.crs.to_epsg() == 4326
    url, params, timeout = fake_session.calls[0]
    assert url == COUNTY_QUERY
    assert params["outSR"] == 4326
    assert params["f"] == "geojson"
    assert params["where"] == "1=1"
    assert timeout == 7


def test_pagination_follows_exceeded_transfer_limit(
    fake_session: FakeSession, states: gpd.GeoDataFrame
) -> None:
    fake_session.add(
        STATE_QUERY,
        geojson_payload(states.iloc[:3], exceededTransferLimit=True),
        geojson_payload(states.iloc[3:6], properties={"exceededTransferLimit": True}),
        geojson_payload(states.iloc[6:]),
    )
    query = LayerQuery(layer_url=STATE_URL, page_size=3)

    frame = _client(fake_session).fetch_features(query)

    assert list(frame["STATE_NAME"]) == list(states["STATE_NAME"])
    offsets = [params["resultOffset"] for _, params, _ in fake_session.calls]
    assert offsets == [0, 3, 6]
    assert all(params["resultRecordCount"] == 3 for _, params, _ in fake_session.calls)


def test_transfer_limit_without_page_size_uses_server_batches(
    fake_session: FakeSession, counties: gpd.GeoDataFrame
) -> None:
    fake_session.add(
        COUNTY_QUERY,
        geojson_payload(counties.iloc[:10], properties={"exceededTransferLimit": True}),
        geojson_payload(counties.iloc[10:30], exceededTransferLimit=True),
        geojson_payload(counties.iloc[30:]),
    )

    frame = _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL))

    assert len(frame) == 39
    assert list(frame["JURISDICT_LABEL_NM"]) == list(counties["JURISDICT_LABEL_NM"])
    assert len(fake_session.calls) == 3
    first, second, third = (params for _, params, _ in fake_session.calls)
    assert "resultOffset" not in first
    assert second["resultOffset"] == 10
    assert third["resultOffset"] == 30
    assert all("resultRecordCount" not in params for _, params, _ in fake_session.calls)


@pytest.mark.parametrize(
    "ring",
    [
        [[None, 1], [1, 1], [1, 0], [0, 0]],
        [[0, 0], 5, [1, 0], [0, 0]],
        [[0, 0], ["north", 1], [1, 0], [0, 0]],
        [[0, 0], [1], [1, 0], [0, 0]],
    ],
)
def test_malformed_esri_ring_raises_fetch_error(fake_session: FakeSession, ring) -> None:
    fake_session.add(
        COUNTY_QUERY,
        {"features": [{"attributes": {"NAME": "Broken"}, "geometry": {"rings": [ring]}}]},
    )
    with pytest.raises(FetchError, match="malformed ring") as excinfo:
        _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL, fmt="json"))
    assert COUNTY_QUERY in excinfo.value.url


def test_malformed_esri_point_raises_fetch_error() -> None:
    with pytest.raises(FetchError, match="malformed point"):
        esri_geometry_to_shape({"x": "east", "y": 47.6}, url=COUNTY_QUERY)


def test_fetch_esri_json_with_hole(fake_session: FakeSession) -> None:
    shell = [[0, 0], [0, 10], [10, 10], [10, 0], [0, 0]]
    hole = [[2, 2], [4, 2], [4, 4], [2, 4], [2, 2]]
    island = [[20, 0], [20, 1], [21, 1], [21, 0], [20, 0]]
    fake_session.add(
        COUNTY_QUERY,
        {
            "spatialReference": {"wkid": 4326, "latestWkid": 4326},
            "features": [
                {"attributes": {"NAME": "Lake County"}, "geometry": {"rings": [shell, hole]}},
                {"attributes": {"NAME": "Two Parts"}, "geometry": {"rings": [shell, island]}},
                {"attributes": {"NAME": "No Shape"}, "geometry": None},
            ],
        },
    )

    frame = _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL, fmt="json"))

    assert list(frame["NAME"]) == ["Lake County", "Two Parts", "No Shape"]
    lake = frame.geometry.iloc[0]
    assert lake.geom_type == "Polygon"
    assert len(lake.interiors) == 1
    assert lake.area == pytest.approx(96.0)
    assert frame.geometry.iloc[1].geom_type == "MultiPolygon"
    assert frame.geometry.iloc[2] is None
    assert frame.crs.to_epsg() == 4326


def test_esri_point_and_unsupported_geometry() -> None:
    point = esri_geometry_to_shape({"x": -122.3, "y": 47.6})
    assert (point.x, point.y) == (-122.3, 47.6)
    with pytest.raises(FetchError, match="unsupported"):
        esri_geometry_to_shape({"paths": [[[0, 0], [1, 1]]]})


def test_arcgis_error_envelope_raises(fake_session: FakeSession) -> None:
    fake_session.add(
        COUNTY_QUERY,
        {"error": {"code": 400, "message": "Invalid query parameters", "details": ["'where' bad"]}},
    )
    with pytest.raises(FetchError) as excinfo:
        _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL))
    assert excinfo.value.url == COUNTY_QUERY
    assert "Invalid query parameters" in str(excinfo.value)
    assert "'where' bad" in str(excinfo.value)


def test_http_error_raises_with_url_and_cause(fake_session: FakeSession) -> None:
    fake_session.add(COUNTY_QUERY, FakeResponse(status_code=503))
    with pytest.raises(FetchError) as excinfo:
        _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL))
    assert excinfo.value.url == COUNTY_QUERY
    assert isinstance(excinfo.value.cause, requests.HTTPError)
    # no retry
    assert len(fake_session.calls) == 1


def test_network_failure_raises(fake_session: FakeSession) -> None:
    fake_session.add(COUNTY_QUERY, requests.ConnectionError("unreachable"))
    with pytest.raises(FetchError, match="unreachable"):
        _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL))


def test_malformed_payloads_raise(fake_session: FakeSession) -> None:
    fake_session.add(
        COUNTY_QUERY,
        FakeResponse(text="<html>gateway</html>"),
        {"type": "FeatureCollection"},
        ["not", "an", "object"],
    )
    client = _client(fake_session)
    query = LayerQuery(layer_url=COUNTY_URL)
    with pytest.raises(FetchError, match="malformed JSON"):
        client.fetch_features(query)
    with pytest.raises(FetchError, match="features"):
        client.fetch_features(query)
    with pytest.raises(FetchError, match="JSON object"):
        client.fetch_features(query)


def test_empty_result_has_crs(fake_session: FakeSession) -> None:
    fake_session.add(COUNTY_QUERY, {"type": "FeatureCollection", "features": []})
    frame = _client(fake_session).fetch_features(LayerQuery(layer_url=COUNTY_URL))
    assert len(frame) == 0
    assert frame.crs.to_epsg() == 4326


def test_fetch_layer_info_strips_query_suffix(fake_session: FakeSession) -> None:
    fake_session.add(COUNTY_URL, {"name": "Counties", "geometryType": "esriGeometryPolygon"})
    info = _client(fake_session).fetch_layer_info(f"{COUNTY_URL}/query")
    assert info["name"] == "Counties"
    assert fake_session.calls[0][1] == {"f": "json"}

import httpx
import pytest

from dispatch_app.services.geocoding.mapbox_client import GeocodingProviderError, MapboxGeocoder
from dispatch_app.services.routing.directions_client import (
    DirectionsProviderError,
    MapboxDirectionsClient,
    decode_polyline,
    parse_directions_payload,
)


def _mock_client(handler):
    return lambda: httpx.Client(transport=httpx.MockTransport(handler))


def test_geocoder_returns_first_feature(monkeypatch, config):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(
            200,
            json={"features": [{"center": [-105.0, 40.0], "place_name": "123 Main St, Denver"}]},
        )

    geocoder = MapboxGeocoder("token", config=config)
    monkeypatch.setattr(geocoder, "_get_client", _mock_client(handler))

    match = geocoder.geocode("123 Main St, Denver")

    assert (match.latitude, match.longitude) == (40.0, -105.0)
    assert match.provider == "mapbox"
    assert "mapbox.places" in seen["url"]
    assert "access_token=token" in seen["url"]


def test_geocoder_no_features_is_no_match(monkeypatch, config):
    geocoder = MapboxGeocoder("token", config=config)
    monkeypatch.setattr(geocoder, "_get_client", _mock_client(lambda request: httpx.Response(200, json={"features": []})))

    assert geocoder.geocode("nowhere") is None


@pytest.mark.parametrize("center", [5, "40,-105", [-105.0], ["east", "north"]])
def test_geocoder_malformed_center_raises_provider_error(monkeypatch, config, center):
    payload = {"features": [{"center": center}]}
    geocoder = MapboxGeocoder("token", config=config)
    monkeypatch.setattr(geocoder, "_get_client", _mock_client(lambda request: httpx.Response(200, json=payload)))

    with pytest.raises(GeocodingProviderError, match="invalid center"):
        geocoder.geocode("123 Main St")


def test_geocoder_retries_server_errors_then_raises(monkeypatch, config):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    geocoder = MapboxGeocoder("token", max_retries=2, backoff_seconds=0, config=config)
    monkeypatch.setattr(geocoder, "_get_client", _mock_client(handler))

    with pytest.raises(GeocodingProviderError):
        geocoder.geocode("123 Main St")
    assert len(calls) == 3


def test_geocoder_does_not_retry_client_errors(monkeypatch, config):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401)

    geocoder = MapboxGeocoder("token", max_retries=2, backoff_seconds=0, config=config)
    monkeypatch.setattr(geocoder, "_get_client", _mock_client(handler))

    with pytest.raises(GeocodingProviderError):
        geocoder.geocode("123 Main St")
    assert len(calls) == 1


def test_geocoder_without_token(config):
    geocoder = MapboxGeocoder(None, config=config)

    assert geocoder.configured is False
    with pytest.raises(GeocodingProviderError):
        geocoder.geocode("123 Main St")


def test_decode_polyline():
    points = decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")

    assert points == [
        pytest.approx((38.5, -120.2)),
        pytest.approx((40.7, -120.95)),
        pytest.approx((43.252, -126.453)),
    ]


def test_parse_directions_payload():
    route = parse_directions_payload(
        {
            "code": "Ok",
            "routes": [{"geometry": "_p~iF~ps|U_ulLnnqC", "distance": 1234.5, "duration": 321.0}],
        }
    )

    assert route.distance_meters == 1234.5
    assert route.duration_seconds == 321.0
    assert len(route.geometry) == 2


def test_parse_directions_payload_no_route():
    assert parse_directions_payload({"code": "NoRoute", "routes": []}) is None


def test_parse_directions_payload_error():
    with pytest.raises(DirectionsProviderError):
        parse_directions_payload({"code": "InvalidInput", "message": "bad"})


def test_directions_request_uses_lon_lat_order(monkeypatch, config):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json={"code": "Ok", "routes": [{"geometry": "_p~iF~ps|U_ulLnnqC", "distance": 10, "duration": 5}]},
        )

    client = MapboxDirectionsClient("token", profile="driving", config=config)
    monkeypatch.setattr(client, "_get_client", _mock_client(handler))

    route = client.route([(39.7, -105.0), (39.8, -104.9)])

    assert route is not None
    assert seen["path"].endswith("/directions/v5/mapbox/driving/-105.0,39.7;-104.9,39.8")


def test_directions_rejects_oversized_requests(config):
    client = MapboxDirectionsClient("token", config=config)

    with pytest.raises(ValueError):
        client.route([(0.0, float(i)) for i in range(26)])
    with pytest.raises(ValueError):
        client.route([(0.0, 0.0)])

import httpx
import pytest

from sima.routing import RouteClient, RouteOverlay, Route, decode_polyline, encode_polyline

CANONICAL = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"
CANONICAL_POINTS = [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


def test_decode_canonical_polyline():
    assert decode_polyline(CANONICAL) == CANONICAL_POINTS


def test_encode_matches_canonical():
    assert encode_polyline(CANONICAL_POINTS) == CANONICAL


def test_decode_empty():
    assert decode_polyline("") == []


def test_decode_truncated_raises():
    with pytest.raises(ValueError):
        decode_polyline("_p~iF~ps")


def test_decode_bad_character_raises():
    with pytest.raises(ValueError):
        decode_polyline("_p~iF ~ps|U")


def _client(handler):
    return RouteClient("http://osrm.test", timeout=1, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_fetch_sends_lon_lat_and_decodes():
    seen = {}
    line = [(-6.2, 106.8), (-6.205, 106.81), (-6.21, 106.82)]

    def handler(request):
        seen["path"] = request.url.path
        seen["overview"] = request.url.params.get("overview")
        return httpx.Response(200, json={
            "code": "Ok",
            "routes": [{"geometry": encode_polyline(line), "distance": 2500.0, "duration": 320.0}],
        })

    route = _client(handler).fetch((-6.2, 106.8), (-6.21, 106.82))
    assert seen["path"] == "/route/v1/driving/106.8,-6.2;106.82,-6.21"
    assert seen["overview"] == "full"
    assert route.coordinates == line
    assert route.distance_meters == 2500.0


def test_fetch_http_error_returns_none():
    route = _client(lambda request: httpx.Response(500, text="boom")).fetch((-6.2, 106.8), (-6.21, 106.82))
    assert route is None


def test_fetch_timeout_returns_none():
    def handler(request):
        raise httpx.ConnectTimeout("timeout", request=request)

    assert _client(handler).fetch((-6.2, 106.8), (-6.21, 106.82)) is None


def test_fetch_no_route_returns_none():
    handler = lambda request: httpx.Response(200, json={"code": "NoRoute", "routes": []})  # noqa: E731
    assert _client(handler).fetch((-6.2, 106.8), (-6.21, 106.82)) is None


def test_fetch_invalid_coordinates_skip_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    assert _client(handler).fetch((float("nan"), 106.8), (-6.21, 106.82)) is None
    assert calls == []


class FakeClient:
    def __init__(self):
        self.routes = {}
        self.hook = None

    def fetch(self, origin, destination):
        if self.hook:
            hook, self.hook = self.hook, None
            hook()
        coords = self.routes.get(destination)
        return Route(coordinates=coords) if coords else None


def test_overlay_replaces_previous_line():
    client = FakeClient()
    client.routes[(1.0, 1.0)] = [(0.0, 0.0), (1.0, 1.0)]
    client.routes[(2.0, 2.0)] = [(0.0, 0.0), (2.0, 2.0)]
    overlay = RouteOverlay(client)

    overlay.show((0.0, 0.0), (1.0, 1.0), target="a")
    assert overlay.target == "a"
    overlay.show((0.0, 0.0), (2.0, 2.0), target="b")
    assert overlay.line == [(0.0, 0.0), (2.0, 2.0)]
    assert overlay.target == "b"


def test_overlay_failure_leaves_no_line():
    client = FakeClient()
    client.routes[(1.0, 1.0)] = [(0.0, 0.0), (1.0, 1.0)]
    overlay = RouteOverlay(client)
    overlay.show((0.0, 0.0), (1.0, 1.0), target="a")

    assert overlay.show((0.0, 0.0), (9.0, 9.0), target="b") is None
    assert overlay.line is None


def test_overlay_drops_stale_response():
    client = FakeClient()
    client.routes[(1.0, 1.0)] = [(0.0, 0.0), (1.0, 1.0)]
    client.routes[(2.0, 2.0)] = [(0.0, 0.0), (2.0, 2.0)]
    overlay = RouteOverlay(client)
    # pilihan baru dibuat saat respons pertama masih di jalan
    client.hook = lambda: overlay.show((0.0, 0.0), (2.0, 2.0), target="b")

    assert overlay.show((0.0, 0.0), (1.0, 1.0), target="a") is None
    assert overlay.target == "b"
    assert overlay.line == [(0.0, 0.0), (2.0, 2.0)]


def test_overlay_closed_drops_response():
    client = FakeClient()
    client.routes[(1.0, 1.0)] = [(0.0, 0.0), (1.0, 1.0)]
    overlay = RouteOverlay(client)
    client.hook = overlay.close

    assert overlay.show((0.0, 0.0), (1.0, 1.0), target="a") is None
    assert overlay.line is None
    assert overlay.show((0.0, 0.0), (1.0, 1.0), target="a") is None

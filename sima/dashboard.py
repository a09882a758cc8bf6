"""
Live report map served by Dash under /report_maps.

The page polls the organization's assignments, draws one fixed marker for
the organization and a pulsing circle for every live report, opens one
info panel at a time and shows the driving route to the selected report.
Pulse phases and the selection live in dcc.Store components so every
callback can rebuild the MarkerLayer from scratch. The route line belongs
to the page that asked for it (see ViewRoutes).
"""

import logging
import threading
import time
import uuid
from dataclasses import asdict
from typing import Callable, Dict, List, Optional, Tuple

import plotly.graph_objs as go
from dash import ALL, Dash, Input, Output, State, ctx, dcc, html, no_update
from fastapi import status
from fastapi.middleware.wsgi import WSGIMiddleware
from flask import request as flask_request
from starlette.requests import Request as StarletteRequest
from starlette.responses import RedirectResponse

from . import services
from .database import SessionLocal
from .deps import organization_of, user_from_cookie
from .markers import Marker, MarkerLayer, badge_class, live_markers, organization_marker, report_markers
from .routing import RouteClient, RouteOverlay
from .schemas import OrganizationRecord
from .settings import HERE_API_KEY, MAP_PROVIDER, MAP_ZOOM, PULSE_PERIOD_MS

logger = logging.getLogger(__name__)

PREFIX = "/report_maps"
REFRESH_MS = 5000
VIEW_IDLE_SECONDS = 300
DEFAULT_CENTER = (-6.2, 106.816666)  # Jakarta
HERE_TILES = "https://maps.hereapi.com/v3/base/mc/{{z}}/{{x}}/{{y}}/png8?apiKey={key}"

INDEX_STRING = """<!DOCTYPE html>
<html>
<head>
{%metas%}
<title>{%title%}</title>
{%favicon%}
{%css%}
<link rel="stylesheet" href="/static/app.css">
</head>
<body>
<header class="topbar"><div class="topbar-inner">
  <a class="brand" href="/">SIMA</a>
  <nav class="links">
    <a href="/">Beranda</a><a href="/report">Laporan</a><a href="/report_maps/">Peta</a>
    <a href="/settings/instansi">Pengaturan</a><a href="/auth/logout">Keluar</a>
  </nav>
</div></header>
{%app_entry%}
<footer>{%config%}{%scripts%}{%renderer%}</footer>
</body>
</html>"""


def current_organization(token_cookie: Optional[str]) -> Optional[OrganizationRecord]:
    db = SessionLocal()
    try:
        user = user_from_cookie(db, token_cookie)
        if user is None:
            return None
        org = organization_of(db, user)
        return services.organization_record(org) if org else None
    finally:
        db.close()


def load_markers(org: OrganizationRecord) -> dict:
    db = SessionLocal()
    try:
        rows = services.list_assignments(db, org.id)
    finally:
        db.close()
    org_marker = organization_marker(org)
    return {
        "organization": asdict(org_marker) if org_marker else None,
        "markers": [asdict(m) for m in live_markers(report_markers(rows))],
    }


def layer_from(store: Optional[dict], state: Optional[dict] = None) -> MarkerLayer:
    store = store or {}
    org = store.get("organization")
    layer = MarkerLayer()
    layer.sync(Marker(**org) if org else None, [Marker(**m) for m in store.get("markers") or []])
    layer.restore(state)
    return layer


def map_style() -> dict:
    if MAP_PROVIDER == "here":
        if HERE_API_KEY:
            return {
                "style": "white-bg",
                "layers": [{
                    "below": "traces",
                    "sourcetype": "raster",
                    "sourceattribution": "© HERE",
                    "source": [HERE_TILES.format(key=HERE_API_KEY)],
                }],
            }
        logger.warning("MAP_PROVIDER=here without HERE_API_KEY, falling back to OpenStreetMap")
    return {"style": "open-street-map"}


def build_figure(layer: MarkerLayer, route: Optional[List[List[float]]] = None) -> go.Figure:
    fig = go.Figure()
    if route:
        fig.add_trace(go.Scattermap(
            lat=[p[0] for p in route],
            lon=[p[1] for p in route],
            mode="lines",
            line={"width": 4, "color": "#2563eb"},
            hoverinfo="skip",
            name="Rute",
        ))
    live = list(layer.markers.values())
    if live:
        # lingkaran denyut di bawah titik laporan
        fig.add_trace(go.Scattermap(
            lat=[m.latitude for m in live],
            lon=[m.longitude for m in live],
            mode="markers",
            marker={"size": [layer.radius(m.id) for m in live], "color": [m.color for m in live], "opacity": 0.3},
            hoverinfo="skip",
            name="Denyut",
        ))
        fig.add_trace(go.Scattermap(
            lat=[m.latitude for m in live],
            lon=[m.longitude for m in live],
            mode="markers",
            marker={"size": 12, "color": [m.color for m in live]},
            text=[m.name for m in live],
            customdata=[m.id for m in live],
            hovertemplate="%{text}<extra></extra>",
            name="Laporan",
        ))
    org = layer.organization
    if org is not None:
        fig.add_trace(go.Scattermap(
            lat=[org.latitude],
            lon=[org.longitude],
            mode="markers",
            marker={"size": 18, "color": "black"},
            text=[org.name],
            customdata=[org.id],
            hovertemplate="%{text}<extra></extra>",
            name="Instansi",
        ))
    if org is not None:
        center = org.position
    elif live:
        center = live[0].position
    else:
        center = DEFAULT_CENTER
    fig.update_layout(
        map={**map_style(), "center": {"lat": center[0], "lon": center[1]}, "zoom": MAP_ZOOM},
        margin={"l": 0, "r": 0, "t": 0, "b": 0},
        showlegend=False,
        uirevision="report-map",
    )
    return fig


def overlay_children(overlay) -> list:
    if overlay is None:
        return []
    children = [html.Div(overlay.lines[0], className="overlay-title")]
    children += [html.Div(line) for line in overlay.lines[1:]]
    if overlay.directions:
        children.append(html.A("Petunjuk arah", href=overlay.directions, target="_blank", rel="noopener"))
    return children


def marker_cards(store: dict) -> list:
    markers = store.get("markers") or []
    if not markers:
        return [html.Div("Tidak ada laporan aktif", className="muted")]
    cards = []
    for m in markers:
        cards.append(html.Div(
            [
                html.Div(m["name"], className="card-title"),
                html.Span((m.get("status") or "-").upper(), className=f"badge {badge_class(m.get('status'))}"),
                html.Div(m.get("address") or "-", className="muted"),
            ],
            id={"type": "marker-card", "index": m["id"]},
            n_clicks=0,
            className="card marker-card",
        ))
    return cards


class ViewRoutes:
    """Route overlays keyed by map view.

    Every page load gets its own view id, so a selection or a close in one
    tab never drops the route of another. Views that stop polling for
    ``idle_seconds`` are closed and forgotten.
    """

    def __init__(self, client: RouteClient, idle_seconds: float = VIEW_IDLE_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._views: Dict[str, Tuple[RouteOverlay, float]] = {}
        self._lock = threading.Lock()

    def get(self, view_id: str) -> RouteOverlay:
        now = self._clock()
        with self._lock:
            self._prune(now)
            entry = self._views.get(view_id)
            overlay = entry[0] if entry else RouteOverlay(self.client)
            self._views[view_id] = (overlay, now)
            return overlay

    def _prune(self, now: float) -> None:
        for view_id, (overlay, seen) in list(self._views.items()):
            if now - seen > self.idle_seconds:
                overlay.close()
                del self._views[view_id]
                logger.debug("Map view %s expired", view_id)

    def __len__(self) -> int:
        return len(self._views)


def serve_layout():
    return html.Div(
        [
            dcc.Store(id="view-store", data=uuid.uuid4().hex),
            dcc.Store(id="markers-store"),
            dcc.Store(id="pulse-store"),
            dcc.Store(id="selection-store"),
            dcc.Store(id="route-store"),
            dcc.Interval(id="refresh-tick", interval=REFRESH_MS, n_intervals=0),
            dcc.Interval(id="pulse-tick", interval=PULSE_PERIOD_MS, n_intervals=0),
            dcc.Loading(
                html.Div(
                    [
                        html.Div(id="marker-list", className="marker-list"),
                        html.Div(
                            [
                                dcc.Graph(id="map", style={"height": "80vh"}, config={"scrollZoom": True}),
                                html.Div(
                                    [
                                        html.Div(id="overlay-body"),
                                        html.Button("Tutup", id="overlay-close", n_clicks=0, className="btn"),
                                    ],
                                    id="overlay-panel",
                                    className="overlay-panel",
                                    style={"display": "none"},
                                ),
                            ],
                            className="map-wrap",
                        ),
                    ],
                    className="map-page",
                ),
                id="map-loading",
                type="circle",
                # hanya saat data marker dimuat, bukan setiap denyut
                target_components={"marker-list": "children"},
                delay_show=300,
            ),
        ]
    )


def create_dash_app(route_client: Optional[RouteClient] = None) -> Dash:
    views = ViewRoutes(route_client or RouteClient())

    dash_app = Dash(__name__, requests_pathname_prefix=f"{PREFIX}/", title="Peta Laporan")
    dash_app.index_string = INDEX_STRING
    dash_app.layout = serve_layout

    @dash_app.callback(
        Output("markers-store", "data"),
        Output("marker-list", "children"),
        Input("refresh-tick", "n_intervals"),
        State("view-store", "data"),
    )
    def _refresh(_, view_id):
        if view_id:
            views.get(view_id)
        org = current_organization(flask_request.cookies.get("access_token"))
        if org is None:
            empty = {"organization": None, "markers": []}
            return empty, [html.Div("Instansi belum diatur", className="muted")]
        data = load_markers(org)
        return data, marker_cards(data)

    @dash_app.callback(
        Output("selection-store", "data"),
        Output("route-store", "data"),
        Input("map", "clickData"),
        Input({"type": "marker-card", "index": ALL}, "n_clicks"),
        Input("overlay-close", "n_clicks"),
        Input("markers-store", "data"),
        State("selection-store", "data"),
        State("view-store", "data"),
        prevent_initial_call=True,
    )
    def _select(click, _cards, _close, store, selection, view_id):
        if current_organization(flask_request.cookies.get("access_token")) is None or not view_id:
            return None, None
        routes = views.get(view_id)
        trigger = ctx.triggered_id
        selected = (selection or {}).get("marker_id")

        if trigger == "overlay-close":
            routes.clear()
            return None, None
        layer = layer_from(store)
        if trigger == "markers-store":
            if selected and layer.select(selected) is None:
                # laporan sudah selesai atau dialihkan
                routes.clear()
                return None, None
            return no_update, no_update

        if trigger == "map":
            points = (click or {}).get("points") or []
            marker_id = points[0].get("customdata") if points else None
        elif isinstance(trigger, dict) and trigger.get("type") == "marker-card":
            if not ctx.triggered[0].get("value"):
                return no_update, no_update
            marker_id = trigger.get("index")
        else:
            return no_update, no_update

        overlay = layer.select(marker_id) if marker_id else None
        if overlay is None:
            return no_update, no_update
        if overlay.is_current or layer.organization is None:
            routes.clear()
            return {"marker_id": marker_id}, None
        line = routes.show(layer.organization.position, overlay.marker.position, target=marker_id)
        return {"marker_id": marker_id}, [list(p) for p in line] if line else None

    @dash_app.callback(
        Output("map", "figure"),
        Output("pulse-store", "data"),
        Output("overlay-body", "children"),
        Output("overlay-panel", "style"),
        Input("pulse-tick", "n_intervals"),
        Input("markers-store", "data"),
        Input("selection-store", "data"),
        Input("route-store", "data"),
        State("pulse-store", "data"),
    )
    def _render(_, store, selection, route, pulses):
        layer = layer_from(store, {"pulses": pulses or {}, "overlay": (selection or {}).get("marker_id")})
        if ctx.triggered_id == "pulse-tick":
            layer.tick()
        panel_style = {"display": "block" if layer.overlay else "none"}
        return build_figure(layer, route), layer.state()["pulses"], overlay_children(layer.overlay), panel_style

    return dash_app


class DashAuthGuard:
    """ASGI wrapper: only logged-in users reach the Dash app."""

    def __init__(self, inner_asgi, login_url: str = "/auth/login"):
        self.inner = inner_asgi
        self.login_url = login_url

    async def __call__(self, scope, receive, send):
        if scope.get("type") != "http":
            return await self.inner(scope, receive, send)
        req = StarletteRequest(scope, receive)
        db = SessionLocal()
        try:
            user = user_from_cookie(db, req.cookies.get("access_token"))
        finally:
            db.close()
        if user is None:
            resp = RedirectResponse(url=self.login_url, status_code=status.HTTP_303_SEE_OTHER)
            return await resp(scope, receive, send)
        return await self.inner(scope, receive, send)


def mount_dashboard(app, route_client: Optional[RouteClient] = None) -> Dash:
    dash_app = create_dash_app(route_client)
    app.mount(PREFIX, DashAuthGuard(WSGIMiddleware(dash_app.server)))
    return dash_app

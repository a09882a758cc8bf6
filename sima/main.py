# sima/main.py
import logging
import time

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.responses import JSONResponse

from . import models
from .dashboard import mount_dashboard
from .database import Base, SessionLocal, engine
from .deps import _wants_json
from .realtime import Broker
from .routers import auth, live, maps, organizations, pages, reports
from .routing import RouteClient
from .settings import (
    ALLOWED_HOSTS,
    BASE_DIR,
    CORS_ORIGINS,
    ENABLE_HTTPS_REDIRECT,
    OSRM_BASE_URL,
    ROUTE_TIMEOUT,
    STATUS_MUTATION_MODE,
    templates,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="SIMA")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Permissions-Policy", "geolocation=(self)")
        if not request.url.path.startswith("/static"):
            response.headers.setdefault("Cache-Control", "no-store")
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window POST limit per (ip, path) on the auth and intake endpoints."""

    def __init__(self, app, limit: int = 60, window_seconds: int = 60, paths: list[str] | None = None):
        super().__init__(app)
        self.limit = limit
        self.window = window_seconds
        self.paths = set(paths or [])
        self._store: dict = {}

    def hit(self, key, now: int) -> bool:
        """Count one request for ``key``; False once it is over the limit."""
        # buang jendela yang sudah lewat
        expired = [k for k, (_, start) in self._store.items() if now - start >= self.window]
        for k in expired:
            del self._store[k]
        count, start = self._store.get(key, (0, now))
        self._store[key] = (count + 1, start)
        return count + 1 <= self.limit

    async def dispatch(self, request, call_next):
        path = request.url.path
        if self.paths and request.method.upper() == "POST" and any(path.startswith(p) for p in self.paths):
            ip = request.client.host if request.client else "-"
            if not self.hit((ip, path), int(time.time())):
                logger.warning("Rate limit hit for %s on %s", ip, path)
                return JSONResponse({"detail": "Too Many Requests"}, status_code=429)
        return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
if ENABLE_HTTPS_REDIRECT:
    app.add_middleware(HTTPSRedirectMiddleware)
if ALLOWED_HOSTS and ALLOWED_HOSTS != ["*"]:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=ALLOWED_HOSTS)
app.add_middleware(
    RateLimitMiddleware,
    limit=100,  # 100 req/min per IP per path
    window_seconds=60,
    paths=["/auth/login", "/auth/register", "/api/login", "/api/register", "/api/intake/reports"],
)

app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

app.state.route_client = RouteClient(OSRM_BASE_URL, ROUTE_TIMEOUT)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    app.state.broker = Broker()
    db = SessionLocal()
    try:
        # satu baris counts per jenis instansi
        for t in models.INSTANCE_TYPES:
            if not db.query(models.Count).filter(models.Count.title == t).first():
                db.add(models.Count(title=t, value=0))
        db.commit()
    finally:
        db.close()
    logger.info("SIMA started (status mutation mode: %s)", STATUS_MUTATION_MODE)


@app.on_event("shutdown")
def on_shutdown():
    broker = getattr(app.state, "broker", None)
    if broker is not None:
        broker.shutdown()


# Routers
app.include_router(auth.router,          prefix="/api", tags=["auth"])
app.include_router(reports.router,       prefix="/api", tags=["reports"])
app.include_router(organizations.router, prefix="/api", tags=["organizations"])
app.include_router(maps.router,          prefix="/api", tags=["maps"])
app.include_router(live.router,          prefix="/api", tags=["live"])
app.include_router(live.router_ws,                      tags=["live"])
app.include_router(auth.router_pages,                   tags=["auth pages"])
app.include_router(pages.router,                        tags=["pages"])


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_303_SEE_OTHER:
        return RedirectResponse(url="/auth/login", status_code=status.HTTP_303_SEE_OTHER)
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return templates.TemplateResponse(request, "not_found.html", {"error": exc.detail}, status_code=404)
    return templates.TemplateResponse(request, "error.html", {"error": exc.detail}, status_code=exc.status_code)


# ---- Peta laporan (Dash) di /report_maps ----
mount_dashboard(app, app.state.route_client)

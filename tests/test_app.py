from fastapi.testclient import TestClient

from sima.main import RateLimitMiddleware, app


client = TestClient(app)


def test_login_page_loads():
    resp = client.get("/auth/login")
    assert resp.status_code == 200
    assert "Masuk" in resp.text
    assert resp.headers["x-content-type-options"] == "nosniff"


def test_unknown_page_renders_not_found():
    resp = client.get("/tidak-ada")
    assert resp.status_code == 404
    assert "Halaman tidak ditemukan" in resp.text


def test_unknown_api_path_is_json():
    resp = client.get("/api/tidak-ada")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Not Found"}


def test_report_maps_requires_login():
    resp = client.get("/report_maps/", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/auth/login"


def test_logout_clears_session():
    resp = client.get("/auth/logout", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"].startswith("/auth/login")


def test_rate_limit_window_and_pruning():
    limiter = RateLimitMiddleware(None, limit=2, window_seconds=60)
    assert limiter.hit(("1.1.1.1", "/api/login"), 0)
    assert limiter.hit(("1.1.1.1", "/api/login"), 10)
    assert not limiter.hit(("1.1.1.1", "/api/login"), 20)
    assert limiter.hit(("2.2.2.2", "/api/login"), 30)

    # jendela pertama habis: kunci lama dibuang, hitungan mulai lagi
    assert limiter.hit(("2.2.2.2", "/api/login"), 70)
    assert ("1.1.1.1", "/api/login") not in limiter._store
    assert limiter.hit(("1.1.1.1", "/api/login"), 70)

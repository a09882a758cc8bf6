import httpx

from sima import models
from sima.database import SessionLocal
from sima.routing import RouteClient, encode_polyline


def _assignment(assignment_id):
    db = SessionLocal()
    try:
        a = db.query(models.ReportAssignment).filter(models.ReportAssignment.id == assignment_id).first()
        return a.organization_id, a.status, a.report.status
    finally:
        db.close()


def test_register_and_login_flow(client):
    r1 = client.post("/api/register", json={
        "full_name": "Siti Aminah",
        "email": "siti@sima.co.id",
        "password": "StrongPass123",
        "account_type": "police",
    })
    assert r1.status_code == 201
    assert r1.json()["uid"]

    dup = client.post("/api/register", json={
        "full_name": "Siti Aminah",
        "email": "siti@sima.co.id",
        "password": "StrongPass123",
    })
    assert dup.status_code == 409

    bad = client.post("/api/login", json={"email": "siti@sima.co.id", "password": "salah"})
    assert bad.status_code == 401

    r2 = client.post("/api/login", json={"email": "siti@sima.co.id", "password": "StrongPass123"})
    assert r2.status_code == 200
    assert r2.json()["message"] == "Login ok"

    me = client.get("/api/me").json()
    assert me["email"] == "siti@sima.co.id"
    assert me["organization_id"] is None


def test_api_requires_auth(client):
    resp = client.get("/api/reports")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Not authenticated"


def test_list_reports(auth_client):
    rows = auth_client.get("/api/reports").json()
    assert [r["id"] for r in rows] == [42, 7, 8]
    assert rows[0]["report"]["title"] == "Kecelakaan di Jl. Sudirman"
    assert rows[0]["organization"]["id"] == 1


def test_report_of_other_organization_not_found(auth_client):
    assert auth_client.get("/api/reports/999").status_code == 404


def test_status_change_requires_confirmation(auth_client):
    resp = auth_client.post("/api/reports/42/status", json={"status": "process"})
    assert resp.status_code == 428
    assert _assignment(42) == (1, "pending", "pending")


def test_status_change_updates_both_records(auth_client):
    resp = auth_client.post("/api/reports/42/status", json={"status": "process", "confirmed": True})
    assert resp.status_code == 200
    assert resp.json()["item"]["status"] == "process"
    assert _assignment(42) == (1, "process", "process")


def test_status_change_rejects_unknown_status(auth_client):
    resp = auth_client.post("/api/reports/42/status", json={"status": "selesai", "confirmed": True})
    assert resp.status_code == 422


def test_transfer_moves_report(auth_client, login_as):
    resp = auth_client.post("/api/reports/7/transfer", json={"organization_id": 3})
    assert resp.status_code == 428

    resp = auth_client.post("/api/reports/7/transfer", json={"organization_id": 3, "confirmed": True})
    assert resp.status_code == 200
    assert resp.json()["item"]["organization"]["id"] == 3
    assert auth_client.get("/api/reports/7").status_code == 404

    login_as("harapan@sima.co.id")
    assert [r["id"] for r in auth_client.get("/api/reports").json()] == [7]


def test_transfer_to_other_type_rejected(auth_client):
    resp = auth_client.post("/api/reports/7/transfer", json={"organization_id": 5, "confirmed": True})
    assert resp.status_code == 400
    assert _assignment(7)[0] == 1


def test_search_organizations(auth_client):
    found = auth_client.get("/api/organizations", params={"q": "HARA"}).json()
    assert found == [{"id": 3, "name": "RS Harapan", "instance_type": "ambulance"}]
    # tanpa filter: hanya jenis yang sama, tanpa instansi sendiri
    assert [o["id"] for o in auth_client.get("/api/organizations").json()] == [3]
    assert auth_client.get("/api/organizations", params={"q": "xyz"}).json() == []


def test_user_without_organization(client, login_as):
    login_as("baru@sima.co.id")
    assert client.get("/api/reports").status_code == 409
    assert client.get("/api/organizations/me").status_code == 404


def test_save_organization(client, login_as):
    login_as("baru@sima.co.id")
    bad = client.put("/api/organizations/me", json={"name": "Damkar", "lat_long": "abc", "instance_type": "firefighter"})
    assert bad.status_code == 400
    assert client.get("/api/counts").json()["firefighter"] == 0

    ok = client.put("/api/organizations/me", json={"name": "Damkar Pusat", "lat_long": "−6.18, 106.83", "instance_type": "firefighter"})
    assert ok.status_code == 200
    body = ok.json()
    assert body["created"] is True
    assert body["message"] == "Data saved successfully!"
    assert body["item"]["latitude"] == -6.18

    again = client.put("/api/organizations/me", json={"name": "Damkar Pusat 2", "lat_long": "-6.18,106.83", "instance_type": "firefighter"})
    assert again.json()["message"] == "Data updated successfully!"
    assert client.get("/api/counts").json() == {"ambulance": 2, "police": 1, "firefighter": 1}


def test_intake_requires_key(client):
    payload = {"title": "Kebakaran kecil", "latitude": -6.201, "longitude": 106.801, "type": "ambulance"}
    assert client.post("/api/intake/reports", json=payload).status_code == 403
    resp = client.post("/api/intake/reports", json=payload, headers={"X-Intake-Key": "kunci-intake"})
    assert resp.status_code == 201
    item = resp.json()["item"]
    assert item["organization"]["id"] == 1
    assert item["status"] == "pending"


def test_map_markers(auth_client):
    data = auth_client.get("/api/maps/markers").json()
    assert data["organization"]["id"] == "org-1"
    assert [m["id"] for m in data["markers"]] == ["report-42", "report-7"]
    assert data["markers"][0]["color"] == "orange"


def test_map_route(auth_client):
    line = [(-6.2, 106.8), (-6.21, 106.82)]

    def handler(request):
        return httpx.Response(200, json={"code": "Ok", "routes": [{"geometry": encode_polyline(line), "distance": 10.0}]})

    app = auth_client.app
    saved = app.state.route_client
    app.state.route_client = RouteClient("http://osrm.test", client=httpx.Client(transport=httpx.MockTransport(handler)))
    try:
        data = auth_client.get("/api/maps/route/42").json()
        assert data["coordinates"] == [[-6.2, 106.8], [-6.21, 106.82]]

        app.state.route_client = RouteClient("http://osrm.test", client=httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))))
        failed = auth_client.get("/api/maps/route/42")
        assert failed.status_code == 200
        assert failed.json()["coordinates"] == []
    finally:
        app.state.route_client = saved


def test_sound_preference_cookie(auth_client):
    resp = auth_client.post("/api/preferences/sound", json={"enabled": True})
    assert resp.status_code == 200
    assert resp.cookies.get("is_active_sound_notification") == "true"


def test_sound_toggle_reflects_cookie(auth_client):
    assert 'id="sound-toggle" checked' not in auth_client.get("/").text
    auth_client.post("/api/preferences/sound", json={"enabled": True})
    assert 'id="sound-toggle" checked' in auth_client.get("/").text


# ---- halaman ----

def test_pages_redirect_to_login(client):
    resp = client.get("/report", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/auth/login"


def test_login_page_and_form(client):
    assert "Masuk" in client.get("/auth/login").text
    bad = client.post("/auth/login", data={"email": "sehat@sima.co.id", "password": "salah"})
    assert bad.status_code == 400
    assert "Email atau password salah" in bad.text
    ok = client.post("/auth/login", data={"email": "sehat@sima.co.id", "password": "rahasia123"}, follow_redirects=False)
    assert ok.status_code == 303
    assert ok.headers["location"] == "/"


def test_home_shows_counts(auth_client):
    resp = auth_client.get("/")
    assert resp.status_code == 200
    assert 'id="count-ambulance">2<' in resp.text


def test_report_page(auth_client):
    resp = auth_client.get("/report")
    assert resp.status_code == 200
    assert "Kecelakaan di Jl. Sudirman" in resp.text
    assert "bg-yellow-500" in resp.text


def test_report_detail_page(auth_client):
    resp = auth_client.get("/report/42")
    assert resp.status_code == 200
    assert "Budi Santoso" in resp.text
    assert "+628123456789" in resp.text
    assert "No Image Available" in resp.text
    assert "2.50 km" in resp.text
    assert "https://img.test/101.jpg" in auth_client.get("/report/7").text


def test_status_page_confirms_before_change(auth_client):
    prompt = auth_client.get("/report/42/status", params={"status": "success"})
    assert prompt.status_code == 200
    assert "menjadi SUCCESS?" in prompt.text
    assert _assignment(42)[1] == "pending"

    done = auth_client.post("/report/42/status", data={"status": "success"}, follow_redirects=False)
    assert done.status_code == 303
    assert done.headers["location"].startswith("/report?toast=")
    assert _assignment(42) == (1, "success", "success")


def test_transfer_page_flow(auth_client):
    search = auth_client.get("/report/7/transfer", params={"q": "harapan"})
    assert "RS Harapan" in search.text
    prompt = auth_client.get("/report/7/transfer", params={"organization_id": 3})
    assert 'ke RS Harapan?' in prompt.text
    done = auth_client.post("/report/7/transfer", data={"organization_id": "3"}, follow_redirects=False)
    assert done.status_code == 303
    assert _assignment(7)[0] == 3


def test_settings_page_validation(client, login_as):
    login_as("baru@sima.co.id")
    resp = client.get("/report", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"].startswith("/settings/instansi")

    bad = client.post("/settings/instansi", data={"name": "Damkar", "lat_long": "-6.2 106.8", "instance_type": "firefighter"})
    assert bad.status_code == 400
    assert "Latitude atau longitude tidak valid" in bad.text

    ok = client.post("/settings/instansi", data={"name": "Damkar", "lat_long": "-6.2,106.8", "instance_type": "firefighter"},
                     follow_redirects=False)
    assert ok.status_code == 303
    assert client.get("/report").status_code == 200

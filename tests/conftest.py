import os
import tempfile
from datetime import datetime

_TMP = tempfile.mkdtemp(prefix="sima-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["INTAKE_API_KEY"] = "kunci-intake"
os.environ["STATUS_MUTATION_MODE"] = "atomic"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from sima import models  # noqa: E402
from sima.database import Base, SessionLocal, engine  # noqa: E402
from sima.main import app  # noqa: E402
from sima.routers.auth import pwd_context  # noqa: E402

PASSWORD = "rahasia123"
_HASH = pwd_context.hash(PASSWORD)


def _seed(db):
    users = [
        models.User(id=1, uid="uid-ambulans-1", full_name="Admin RS Sehat", email="sehat@sima.co.id", phone="0811000001", password=_HASH, account_type="ambulance"),
        models.User(id=2, uid="uid-ambulans-2", full_name="Admin RS Harapan", email="harapan@sima.co.id", phone="0811000002", password=_HASH, account_type="ambulance"),
        models.User(id=3, uid="uid-polisi", full_name="Admin Polsek", email="polsek@sima.co.id", password=_HASH, account_type="police"),
        models.User(id=4, uid="uid-warga", full_name="Budi Santoso", email="budi@sima.co.id", phone="08123456789", password=_HASH, account_type="admin"),
        models.User(id=5, uid="uid-baru", full_name="Admin Baru", email="baru@sima.co.id", password=_HASH, account_type="firefighter"),
    ]
    db.add_all(users)
    db.flush()
    db.add_all([
        models.Organization(id=1, name="RS Sehat", latitude=-6.2, longitude=106.8, user_id=1, instance_type="ambulance"),
        models.Organization(id=3, name="RS Harapan", latitude=-6.25, longitude=106.85, user_id=2, instance_type="ambulance"),
        models.Organization(id=5, name="Polsek Menteng", latitude=-6.19, longitude=106.83, user_id=3, instance_type="police"),
    ])
    db.flush()
    db.add_all([
        models.Report(id=100, title="Kecelakaan di Jl. Sudirman", description="Motor terjatuh", status="pending",
                      latitude=-6.21, longitude=106.82, address="Jl. Sudirman No. 1", type="ambulance", user_id=4),
        models.Report(id=101, title="Orang pingsan", status="process",
                      latitude=-6.22, longitude=106.81, address="Pasar Baru", image_url="https://img.test/101.jpg",
                      type="ambulance", user_id=4),
        models.Report(id=102, title="Sudah ditangani", status="success",
                      latitude=-6.23, longitude=106.8, type="ambulance", user_id=4),
    ])
    db.flush()
    db.add_all([
        models.ReportAssignment(id=42, report_id=100, organization_id=1, status="pending", distance=2.5,
                                assigned_at=datetime(2024, 5, 1, 10, 0)),
        models.ReportAssignment(id=7, report_id=101, organization_id=1, status="process", distance=2.3,
                                assigned_at=datetime(2024, 5, 1, 9, 0)),
        models.ReportAssignment(id=8, report_id=102, organization_id=1, status="success", distance=3.4,
                                assigned_at=datetime(2024, 4, 30, 8, 0)),
    ])
    db.add_all([
        models.Count(title="ambulance", value=2),
        models.Count(title="police", value=1),
        models.Count(title="firefighter", value=0),
    ])
    db.commit()


@pytest.fixture
def seeded():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        _seed(db)
    finally:
        db.close()
    yield


@pytest.fixture
def db(seeded):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(seeded):
    with TestClient(app) as c:
        yield c


def login(client, email="sehat@sima.co.id", password=PASSWORD):
    resp = client.post("/api/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp


@pytest.fixture
def auth_client(client):
    login(client)
    return client


@pytest.fixture
def login_as(client):
    def _login(email, password=PASSWORD):
        return login(client, email, password)
    return _login

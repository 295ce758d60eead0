from fastapi.testclient import TestClient

from hms.main import app


def test_app_mounts_every_router() -> None:
    paths = {route.path for route in app.routes}

    assert '/auth/login' in paths
    assert '/auth/profile' in paths
    assert '/patients' in paths
    assert '/doctors/available' in paths
    assert '/appointments' in paths
    assert '/appointments/{appointment_id}/status' in paths
    assert '/medical-records' in paths


def test_root_reports_running() -> None:
    client = TestClient(app)

    response = client.get('/')

    assert response.status_code == 200
    assert response.json() == {'status': 'Hospital Management API Running'}


def test_protected_routes_require_a_token() -> None:
    client = TestClient(app)

    response = client.get('/appointments')

    assert response.status_code in (401, 403)

import pytest
from fastapi.testclient import TestClient

from app import app, get_actor, get_service


@pytest.fixture
def client(service, actor):
    app.dependency_overrides[get_actor] = lambda: actor
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, solicitud):
    response = client.post("/api/cotizaciones", json=solicitud)
    assert response.status_code == 201, response.text
    return response.json()


def test_health():
    assert TestClient(app).get("/api/health").json() == {"status": "ok"}


def test_requests_without_token_are_rejected(client):
    del app.dependency_overrides[get_actor]
    response = client.get("/api/cotizaciones")
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing Bearer token"


def test_create_returns_number(client, solicitud):
    body = _create(client, solicitud)

    assert body["ok"] is True
    assert body["numero"] == "COT-2025-09-001"
    assert body["estado"] == "pendiente"


def test_create_with_invalid_payload_is_400(client):
    response = client.post("/api/cotizaciones", json={"cliente": "ACME"})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error_code"] == "validation_error"
    assert detail["fields"] == ["tarifa"]


def test_get_returns_lifecycle(client, solicitud):
    created = _create(client, solicitud)

    response = client.get(f"/api/cotizaciones/{created['id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["numero"] == created["numero"]
    assert body["stockDisponible"] is True
    assert body["lifecycle"] == {
        "progress": 0,
        "colorTag": "amber-darken-2",
        "bucket": "Unreviewed",
        "hidePending": False,
    }


def test_get_unknown_is_404(client):
    assert client.get("/api/cotizaciones/no-existe").status_code == 404


def test_list_by_bucket(client, solicitud):
    created = _create(client, solicitud)
    _create(client, solicitud)
    client.patch(f"/api/cotizaciones/{created['id']}/workflow", json={"workflow": "cotizado"})

    quoted = client.get("/api/cotizaciones", params={"bucket": "quoted"}).json()
    assert quoted["total"] == 1
    assert quoted["results"][0]["id"] == created["id"]

    assert client.get("/api/cotizaciones").json()["total"] == 2
    assert client.get("/api/cotizaciones", params={"bucket": "archivo"}).status_code == 400


def test_workflow_endpoint_ignores_estado(client, solicitud):
    created = _create(client, solicitud)

    response = client.patch(
        f"/api/cotizaciones/{created['id']}/workflow",
        json={"workflow": "en_revision", "estado": "ganada"},
    )

    assert response.status_code == 200
    assert response.json()["workflow"] == "en_revision"
    assert response.json()["estado"] == "pendiente"


def test_closed_quote_conflicts(client, solicitud):
    created = _create(client, solicitud)
    url = f"/api/cotizaciones/{created['id']}/estado"

    assert client.patch(url, json={"estado": "perdida", "motivo": "plazo"}).status_code == 200
    response = client.patch(url, json={"estado": "reabierta"})

    assert response.status_code == 409
    assert response.json()["detail"]["error_code"] == "invalid_transition"


def test_private_comment(client, solicitud, notifier):
    created = _create(client, solicitud)
    url = f"/api/cotizaciones/{created['id']}/comentarios-privados"

    assert client.post(url, json={"texto": "   "}).status_code == 422
    response = client.post(url, json={"texto": "precio de proveedor confirmado"})

    assert response.status_code == 200
    assert notifier.messages[-1].payload["comentario"] == "precio de proveedor confirmado"

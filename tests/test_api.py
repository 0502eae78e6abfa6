"""
HTTP level tests: authentication, role checks, shared secrets and the
error envelope.
"""
from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from studio_admin.core.config import settings


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_login_returns_token_and_role(client, model):
    response = client.post("/api/auth/login", json={"email": "Valentina@Studio.co", "password": "secret123"})

    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "modelo"
    assert body["token_type"] == "bearer"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["email"] == "valentina@studio.co"


def test_bad_credentials_use_error_envelope(client, model):
    response = client.post("/api/auth/login", json={"email": "valentina@studio.co", "password": "wrong-pass"})

    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"] == "Invalid credentials"
    assert "correlation_id" in response.json()


def test_validation_errors_are_bad_requests(client):
    response = client.post("/api/auth/login", json={"email": "not-an-email", "password": "x"})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "email" in response.json()["error"]


def test_missing_token_rejected(client):
    assert client.get("/api/auth/me").status_code == 401


def test_correlation_id_is_echoed(client):
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"


def test_models_cannot_publish_rates(client, model, headers_for):
    response = client.post(
        "/api/rates",
        json={"kind": "USD→COP", "value": "4100"},
        headers=headers_for(model),
    )

    assert response.status_code == 403


def test_admin_publishes_global_rate(client, admin, model, headers_for):
    created = client.post(
        "/api/rates",
        json={"kind": "USD→COP", "value": "4100"},
        headers=headers_for(admin),
    )
    rates = client.get("/api/rates", headers=headers_for(model))

    assert created.status_code == 201
    assert Decimal(str(rates.json()["usd_cop"])) == Decimal("4100")


def test_cron_routes_require_secret(client):
    denied = client.get("/api/cron/shop-process-installments")
    wrong = client.get("/api/cron/shop-process-installments", headers={"x-cron-secret": "nope"})
    allowed = client.get(
        "/api/cron/shop-process-installments",
        headers={"Authorization": f"Bearer {settings.CRON_SECRET}"},
    )

    assert denied.status_code == 401
    assert wrong.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["success"] is True


def test_close_period_requires_cron_secret(client, admin, headers_for):
    response = client.post("/api/calculator/period-closure/close-period", headers=headers_for(admin))

    assert response.status_code == 401


def test_closure_status_missing_is_404(client, admin, headers_for):
    response = client.get(
        "/api/calculator/period-closure/status",
        params={"period_date": "2020-01-03"},
        headers=headers_for(admin),
    )

    assert response.status_code == 404


def test_emergency_unfreeze_requires_its_secret(client):
    denied = client.delete("/api/admin/unfreeze-platforms")
    allowed = client.delete(
        "/api/admin/unfreeze-platforms",
        headers={"x-emergency-secret": settings.EMERGENCY_UNFREEZE_SECRET},
    )

    assert denied.status_code == 401
    assert allowed.status_code == 200


def test_chat_round_trip(client, model, headers_for, monkeypatch):
    monkeypatch.setattr(settings, "GEMINI_API_KEY", None)

    reply = client.post("/api/chat", json={"message": "hola"}, headers=headers_for(model))
    session_id = reply.json()["session_id"]
    messages = client.get("/api/chat/messages", params={"session_id": session_id}, headers=headers_for(model))

    assert reply.status_code == 200
    assert "Valentina" in reply.json()["reply"]
    assert len(messages.json()) == 2


def test_model_cannot_create_products(client, model, headers_for):
    response = client.post(
        "/api/shop/products",
        json={"name": "Ring light", "base_price": "40000"},
        headers=headers_for(model),
    )

    assert response.status_code == 403


def test_close_period_outside_window_needs_testing_mode(client, monkeypatch):
    monkeypatch.setattr(
        "studio_admin.periods.router.now_in_business_tz",
        lambda: datetime(2025, 11, 19, 12, 0, tzinfo=ZoneInfo("America/Bogota")),
    )
    headers = {"x-cron-secret": settings.CRON_SECRET}

    rejected = client.post("/api/calculator/period-closure/close-period", headers=headers)
    allowed = client.post(
        "/api/calculator/period-closure/close-period",
        headers={**headers, "x-testing-mode": "true"},
    )

    assert rejected.status_code == 400
    assert "closure time" in rejected.json()["error"]
    assert allowed.status_code == 200
    assert allowed.json()["period_date"] == "2025-11-16"

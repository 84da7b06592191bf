"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from roadtrip.core.errors import (
    AppError,
    InvalidPlanError,
    NoActiveSubscriptionError,
    TransactionAbortedError,
    register_error_handlers,
)
from roadtrip.features.services import EngineServices
from roadtrip.features.storage.store import InMemoryStore


def build_app():
    services = EngineServices(InMemoryStore())
    app = FastAPI()
    register_error_handlers(app)

    @app.post("/accounts")
    def create_account(body: dict):
        account = services.accounts.create_account(body)
        return account.model_dump(mode="json", by_alias=True)

    @app.post("/accounts/{user_id}/trips")
    def create_trip(user_id: str):
        return services.resources.create_trip(user_id).model_dump(mode="json")

    @app.post("/accounts/{user_id}/plan/{plan}")
    def change_plan(user_id: str, plan: str):
        return services.subscriptions.change_plan(user_id, plan, "card").model_dump(mode="json", by_alias=True)

    @app.post("/accounts/{user_id}/cancel")
    def cancel(user_id: str):
        return services.subscriptions.cancel(user_id).model_dump(mode="json", by_alias=True)

    @app.get("/broken")
    def broken():
        raise TransactionAbortedError("Storage failure; no changes were written")

    return app


def test_account_wire_shape_is_camel_case():
    client = TestClient(build_app())
    resp = client.post("/accounts", json={"email": "wire@example.com"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["activeSubscriptionId"] == body["subscription"]["id"]
    assert body["subscription"]["features"]["maxTrips"] == 3
    assert body["subscription"]["paymentInfo"]["method"] == "free"


def test_quota_exceeded_payload():
    client = TestClient(build_app())
    user_id = client.post("/accounts", json={"email": "quota@example.com"}).json()["user"]["id"]
    for _ in range(3):
        assert client.post(f"/accounts/{user_id}/trips").status_code == 200

    resp = client.post(f"/accounts/{user_id}/trips")

    assert resp.status_code == 403
    error = resp.json()["error"]
    assert error["code"] == "quota_exceeded"
    assert error["details"] == {"feature": "maxTrips", "limit": 3, "current": 3, "plan": "free"}
    assert error["request_id"] == resp.headers["x-request-id"]


def test_invalid_plan_is_400():
    client = TestClient(build_app())
    user_id = client.post("/accounts", json={"email": "plan@example.com"}).json()["user"]["id"]

    resp = client.post(f"/accounts/{user_id}/plan/platinum")

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_plan"
    assert resp.json()["error"]["details"]["field"] == "plan"


def test_validation_error_lists_fields():
    client = TestClient(build_app())
    resp = client.post("/accounts", json={"email": "nope"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
    assert resp.json()["error"]["details"]["fields"][0]["field"] == "email"


def test_cancel_twice_is_404():
    client = TestClient(build_app())
    user_id = client.post("/accounts", json={"email": "twice@example.com"}).json()["user"]["id"]
    assert client.post(f"/accounts/{user_id}/cancel").status_code == 200

    resp = client.post(f"/accounts/{user_id}/cancel")

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "no_active_subscription"


def test_request_id_header_is_echoed():
    client = TestClient(build_app())
    resp = client.get("/broken", headers={"x-request-id": "rid-123"})
    assert resp.status_code == 500
    assert resp.headers["x-request-id"] == "rid-123"
    assert resp.json()["error"]["request_id"] == "rid-123"
    assert resp.json()["error"]["code"] == "transaction_aborted"


def test_error_taxonomy_statuses():
    assert InvalidPlanError("x").status_code == 400
    assert NoActiveSubscriptionError("u").status_code == 404
    payload = AppError("boom", code="custom", status_code=418).to_payload("rid")
    assert payload == {"error": {"code": "custom", "message": "boom", "request_id": "rid"}, "detail": "boom"}

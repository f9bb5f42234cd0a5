from __future__ import annotations

import json
from typing import Any, Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import Harness, build_harness, make_settings
from payrecon.main import app
from payrecon.wiring import get_verification_service


class FakeResponse:
    def __init__(self, payload: dict[str, Any], status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.headers: dict[str, str] = {}
        self.text = json.dumps(payload)

    def json(self) -> dict[str, Any]:
        return self._payload


class FakeGateways:
    """Routes outbound gateway calls by URL fragment; unrouted calls fail to connect."""

    def __init__(self) -> None:
        self.routes: dict[str, Callable[[], FakeResponse]] = {}
        self.calls: list[str] = []

    def answer(self, fragment: str, payload: dict[str, Any], status_code: int = 200) -> None:
        self.routes[fragment] = lambda: FakeResponse(payload, status_code)

    def handle(self, url: str) -> FakeResponse:
        self.calls.append(url)
        for fragment, respond in self.routes.items():
            if fragment in url:
                return respond()
        raise httpx.ConnectError(f"no route to {url}")


@pytest.fixture
def gateways(monkeypatch: pytest.MonkeyPatch) -> FakeGateways:
    fake = FakeGateways()

    async def fake_get(self, url, headers=None, params=None, **kwargs):  # type: ignore[override]
        return fake.handle(str(url))

    async def fake_post(self, url, headers=None, content=None, **kwargs):  # type: ignore[override]
        return fake.handle(str(url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    return fake


@pytest.fixture
def production_client() -> Iterator[tuple[Harness, TestClient]]:
    harness = build_harness(make_settings(app_env="production"))
    app.dependency_overrides[get_verification_service] = lambda: harness.verification
    try:
        yield harness, TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_root_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_verify_falls_through_to_next_gateway(client: TestClient, gateways: FakeGateways) -> None:
    gateways.answer("/transactions/verify_by_reference", {"status": "error", "message": "No transaction was found"}, 400)
    gateways.answer(
        "/transaction/verify/O-001",
        {
            "status": True,
            "data": {"id": 302961, "status": "success", "amount": 10000, "currency": "NGN"},
        },
    )

    resp = client.get("/api/payments/verify/O-001")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["gateway"] == "PAYSTACK"
    assert data["status"] == "SUCCESS"
    assert data["amount"] == 100.0
    assert data["gatewayReference"] == "302961"
    assert "verifiedAt" in data
    assert "flutterwave" in gateways.calls[0]
    assert len(gateways.calls) == 2


def test_verify_first_gateway_wins(client: TestClient, gateways: FakeGateways) -> None:
    gateways.answer(
        "/transactions/verify_by_reference",
        {"status": "success", "data": {"status": "successful", "amount": 4500, "currency": "NGN", "flw_ref": "FLW-1"}},
    )

    resp = client.get("/api/payments/verify/O-001")

    assert resp.status_code == 200
    assert resp.json()["data"]["gateway"] == "FLUTTERWAVE"
    assert resp.json()["data"]["amount"] == 4500.0
    assert len(gateways.calls) == 1


def test_verify_opay_uses_minor_units(client: TestClient, gateways: FakeGateways) -> None:
    gateways.answer(
        "/api/v1/international/cashier/status",
        {"code": "00000", "data": {"status": "SUCCESS", "amount": {"total": 49160, "currency": "NGN"}, "orderNo": "ON-1"}},
    )

    resp = client.get("/api/payments/verify/BP_1")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert (data["gateway"], data["amount"], data["gatewayReference"]) == ("OPAY", 491.6, "ON-1")


def test_verify_not_found_anywhere(client: TestClient, gateways: FakeGateways) -> None:
    gateways.answer("/api/v1/international/cashier/status", {"code": "02006", "message": "order not found"})

    resp = client.get("/api/payments/verify/MISSING")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Payment verification failed"}
    assert len(gateways.calls) == 3


@pytest.mark.parametrize("path", ["/api/payments/verify", "/api/payments/verify/%20"])
def test_verify_requires_reference(client: TestClient, gateways: FakeGateways, path: str) -> None:
    resp = client.get(path)

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Payment reference is required"}
    assert gateways.calls == []


def test_verify_service_error_is_500(client: TestClient, harness: Harness, monkeypatch: pytest.MonkeyPatch) -> None:
    async def explode(reference: str):
        raise RuntimeError("boom")

    monkeypatch.setattr(harness.verification, "verify", explode)

    resp = client.get("/api/payments/verify/O-001")

    assert resp.status_code == 500
    assert resp.json()["success"] is False


def test_gateway_health_all_working(client: TestClient, gateways: FakeGateways) -> None:
    gateways.answer("/banks/NG", {"status": "success", "data": []})
    gateways.answer("/bank", {"status": True, "data": []})
    gateways.answer("/api/v1/international/cashier/status", {"code": "02006", "message": "order not found"})

    resp = client.get("/api/payments/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["environment"] == "test"
    assert set(body["gateways"]) == {"flutterwave", "paystack", "opay"}
    for report in body["gateways"].values():
        assert report["configured"] and report["tested"] and report["working"]


def test_gateway_health_degraded_when_a_probe_fails(client: TestClient, gateways: FakeGateways) -> None:
    gateways.answer("/banks/NG", {"status": "error"}, 401)
    gateways.answer("/bank", {"status": True, "data": []})

    body = client.get("/api/payments/health").json()

    assert body["status"] == "degraded"
    assert body["gateways"]["flutterwave"]["working"] is False
    assert body["gateways"]["flutterwave"]["error"] == "HTTP 401"
    assert body["gateways"]["paystack"]["working"] is True
    assert body["gateways"]["opay"]["working"] is False


def test_unconfigured_gateway_is_reported_but_not_probed(gateways: FakeGateways) -> None:
    harness = build_harness(make_settings(opay_secret_key="", opay_merchant_id=""))
    gateways.answer("/banks/NG", {"status": "success"})
    gateways.answer("/bank", {"status": True})
    app.dependency_overrides[get_verification_service] = lambda: harness.verification
    try:
        body = TestClient(app).get("/api/payments/health").json()
    finally:
        app.dependency_overrides.clear()

    assert body["status"] == "ok"
    assert body["gateways"]["opay"] == {
        "configured": False,
        "tested": False,
        "working": False,
        "error": "Credentials not configured",
    }
    assert not any("opaycheckout" in url for url in gateways.calls)


def test_opay_probe_skipped_in_production(
    production_client: tuple[Harness, TestClient], gateways: FakeGateways
) -> None:
    _, client = production_client
    gateways.answer("/banks/NG", {"status": "success"})
    gateways.answer("/bank", {"status": True})

    body = client.get("/api/payments/health").json()

    assert body["environment"] == "production"
    assert body["gateways"]["opay"]["tested"] is False
    assert body["gateways"]["opay"]["working"] is True
    assert not any("opaycheckout" in url for url in gateways.calls)

"""
Tests for the HTTP layer: auth, body limits, status mapping and rate limits.
"""
import httpx
import pytest

from carrier_gateway.api.deps import get_orchestrator
from carrier_gateway.main import app
from carrier_gateway.services.shipping_orchestrator import ShippingOrchestrator


@pytest.fixture
def fedex_transport(make_transport, fedex_routes):
    return make_transport(fedex_routes)


@pytest.fixture
async def client(db_session, make_pool, fedex_transport):
    pool = make_pool(fedex_transport)

    async def _orchestrator():
        return ShippingOrchestrator(db_session, pool=pool)

    app.dependency_overrides[get_orchestrator] = _orchestrator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


class TestAdminLabels:
    """Test /api/admin/shipping/labels."""

    @pytest.mark.asyncio
    async def test_requires_token(self, client, fedex_transport, sample_label_body):
        response = await client.post("/api/admin/shipping/labels", json=sample_label_body)

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert fedex_transport.calls == []

    @pytest.mark.asyncio
    async def test_wrong_token(self, client, sample_label_body):
        response = await client.post(
            "/api/admin/shipping/labels",
            json=sample_label_body,
            headers={"Authorization": "Bearer not-the-token"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_body_too_large(self, client, admin_headers):
        response = await client.post(
            "/api/admin/shipping/labels",
            content=b"{" + b" " * 100_001 + b"}",
            headers={**admin_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json() == {"error": "Request body too large"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, admin_headers):
        response = await client.post(
            "/api/admin/shipping/labels",
            content=b"{not json",
            headers={**admin_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON in request body"}

    @pytest.mark.asyncio
    async def test_validation_error_body(self, client, admin_headers, sample_label_body):
        sample_label_body["packages"] = [{"weight": 200}]

        response = await client.post("/api/admin/shipping/labels", json=sample_label_body, headers=admin_headers)

        assert response.status_code == 400
        assert response.json() == {
            "error": "Invalid package weight for package 1",
            "field": "packages[0].weight",
        }

    @pytest.mark.asyncio
    async def test_inactive_carrier(self, client, admin_headers, add_config, sample_label_body):
        await add_config("fedex", is_active=False)

        response = await client.post("/api/admin/shipping/labels", json=sample_label_body, headers=admin_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "fedex is not configured or active"}

    @pytest.mark.asyncio
    async def test_create_then_fetch(self, client, admin_headers, add_config, sample_label_body):
        await add_config("fedex")

        created = await client.post("/api/admin/shipping/labels", json=sample_label_body, headers=admin_headers)

        assert created.status_code == 201
        body = created.json()
        assert body["status"] == "label_created"
        assert body["tracking_number"] == "794612345678"
        assert body["carrier"] == "fedex"

        fetched = await client.get(f"/api/admin/shipping/labels/{body['id']}", headers=admin_headers)
        assert fetched.status_code == 200
        assert fetched.json()["order_id"] == "ORD-1001"

        history = await client.get("/api/admin/shipping/labels", params={"order_id": "ORD-1001"}, headers=admin_headers)
        assert history.status_code == 200
        assert [s["id"] for s in history.json()["data"]] == [body["id"]]

    @pytest.mark.asyncio
    async def test_unknown_shipment(self, client, admin_headers):
        response = await client.get("/api/admin/shipping/labels/missing", headers=admin_headers)

        assert response.status_code == 404
        assert response.json() == {"error": "Shipment not found"}

    @pytest.mark.asyncio
    async def test_history_bad_date(self, client, admin_headers):
        response = await client.get("/api/admin/shipping/labels", params={"from": "soon"}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid from date"

    @pytest.mark.asyncio
    async def test_refresh_tracking(self, client, admin_headers, add_config, sample_label_body):
        await add_config("fedex")
        created = (await client.post("/api/admin/shipping/labels", json=sample_label_body, headers=admin_headers)).json()

        response = await client.post(f"/api/admin/shipping/labels/{created['id']}/tracking", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "delivered"

    @pytest.mark.asyncio
    async def test_label_rate_limit(self, client, sample_label_body):
        for _ in range(10):
            response = await client.post("/api/admin/shipping/labels", json=sample_label_body)
            assert response.status_code == 401

        response = await client.post("/api/admin/shipping/labels", json=sample_label_body)

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded"}

    @pytest.mark.asyncio
    async def test_refresh_tracking_rate_limit(self, client, fedex_transport):
        path = "/api/admin/shipping/labels/00000000-0000-0000-0000-000000000000/tracking"
        for _ in range(30):
            response = await client.post(path)
            assert response.status_code == 401

        response = await client.post(path)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert fedex_transport.calls == []


class TestPublicShipping:
    """Test /api/shipping rates and tracking."""

    @pytest.mark.asyncio
    async def test_rates(self, client, add_config, sample_origin, sample_address):
        await add_config("fedex")

        response = await client.post("/api/shipping/rates", json={
            "origin": sample_origin,
            "destination": sample_address,
            "packages": [{"weight": 2}],
        })

        assert response.status_code == 200
        body = response.json()
        assert [r["service_code"] for r in body["rates"]] == ["FEDEX_GROUND", "FEDEX_2_DAY"]
        assert body["errors"] == []

    @pytest.mark.asyncio
    async def test_rates_missing_fields(self, client):
        response = await client.post("/api/shipping/rates", json={"packages": []})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    @pytest.mark.asyncio
    async def test_track_get_missing_params(self, client):
        response = await client.get("/api/shipping/track", params={"carrier": "fedex"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required parameters"}

    @pytest.mark.asyncio
    async def test_track_get(self, client, add_config):
        await add_config("fedex")

        response = await client.get(
            "/api/shipping/track", params={"carrier": "fedex", "tracking_number": "794612345678"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "delivered"
        assert body["tracking_url"].endswith("794612345678")

    @pytest.mark.asyncio
    async def test_track_post(self, client, add_config):
        await add_config("fedex")

        response = await client.post(
            "/api/shipping/track", json={"carrier": "fedex", "tracking_number": "794612345678"}
        )

        assert response.status_code == 200
        assert len(response.json()["events"]) == 2

    @pytest.mark.asyncio
    async def test_track_post_body_limit(self, client):
        response = await client.post(
            "/api/shipping/track",
            content=b'{"carrier": "fedex", "tracking_number": "' + b"1" * 1000 + b'"}',
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_track_carrier_timeout(self, client, add_config, fedex_routes):
        def hang(request):
            raise httpx.ReadTimeout("timed out", request=request)

        await add_config("fedex")
        fedex_routes["POST /track/v1/trackingnumbers"] = hang

        response = await client.get(
            "/api/shipping/track", params={"carrier": "fedex", "tracking_number": "794612345678"}
        )

        assert response.status_code == 504
        assert response.json() == {"error": "Carrier did not respond in time"}

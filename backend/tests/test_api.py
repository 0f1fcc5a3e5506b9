"""
HTTP API tests
==============

Drives the FastAPI app through httpx.ASGITransport; the provisioning adapter
is replaced with a recording fake via dependency_overrides.
"""

import httpx
import pytest

from conftest import FakeProvisioner
from hostpanel.main import app
from hostpanel.services.auth_service import AuthService
from hostpanel.services.provisioning import get_provisioner

API = "/api/v1"


@pytest.fixture
async def client(db_engine, fake_provisioner):
    app.dependency_overrides[get_provisioner] = lambda: fake_provisioner
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(db, user):
    token = AuthService(db).create_access_token({"sub": user.username})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(db, customer):
    return auth_headers(db, customer)


@pytest.fixture
def other_headers(db, other_customer):
    return auth_headers(db, other_customer)


@pytest.fixture
def admin_headers(db, admin_user):
    return auth_headers(db, admin_user)


async def place_paid_order(client, headers, plan_id, name="My Server"):
    response = await client.post(f"{API}/orders", json={"plan_id": plan_id, "server_name": name}, headers=headers)
    assert response.status_code == 201
    order_id = response.json()["order_id"]
    response = await client.post(
        f"{API}/orders/{order_id}/payments",
        json={"gateway": "paypal", "reference": "PAYID-123", "amount": 9.99, "currency": "USD"},
        headers=headers,
    )
    assert response.status_code == 201
    return order_id


class TestAuthApi:

    async def test_register_login_me(self, client):
        response = await client.post(
            f"{API}/auth/register",
            json={"username": "carol", "email": "carol@example.com", "password": "hunter22"},
        )
        assert response.status_code == 201
        assert response.json()["role"] == "user"

        response = await client.post(f"{API}/auth/login", data={"username": "carol", "password": "hunter22"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        response = await client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.json()["username"] == "carol"

    async def test_duplicate_registration(self, client, customer):
        response = await client.post(
            f"{API}/auth/register",
            json={"username": "alice", "email": "other@example.com", "password": "hunter22"},
        )
        assert response.status_code == 409

    async def test_wrong_password(self, client, customer):
        response = await client.post(f"{API}/auth/login", data={"username": "alice", "password": "nope"})
        assert response.status_code == 401

    async def test_bad_token(self, client):
        response = await client.get(f"{API}/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json()["kind"] == "Unauthorized"


class TestPlansApi:

    async def test_only_active_plans_listed(self, client, plan, inactive_plan):
        response = await client.get(f"{API}/plans")
        body = response.json()
        assert body["total"] == 1
        assert body["plans"][0]["name"] == "Starter"
        assert body["plans"][0]["disk"] == 10

    async def test_unknown_plan(self, client, plan):
        response = await client.get(f"{API}/plans/999")
        assert response.status_code == 404
        assert response.json()["kind"] == "NotFound"


class TestOrdersApi:

    async def test_submit_requires_login(self, client, plan):
        response = await client.post(f"{API}/orders", json={"plan_id": plan.id, "server_name": "x"})
        assert response.status_code == 401
        assert response.json()["kind"] == "Unauthorized"

    async def test_submit_and_view(self, client, plan, customer_headers):
        order_id = await place_paid_order(client, customer_headers, plan.id)

        response = await client.get(f"{API}/orders/{order_id}", headers=customer_headers)
        body = response.json()
        assert body["status"] == "pending"
        assert body["payment_status"] == "pending"
        assert body["pterodactyl_server_id"] is None
        assert "failure_reason" not in body

        response = await client.get(f"{API}/orders", headers=customer_headers)
        assert response.json()["total"] == 1

        response = await client.get(f"{API}/orders/{order_id}/payments", headers=customer_headers)
        payments = response.json()["items"]
        assert payments[0]["payment_id"] == "PAYID-123"
        assert payments[0]["status"] == "pending"

    async def test_empty_server_name(self, client, plan, customer_headers):
        response = await client.post(f"{API}/orders", json={"plan_id": plan.id, "server_name": " "}, headers=customer_headers)
        assert response.status_code == 422
        assert response.json()["kind"] == "ValidationError"

    async def test_missing_plan_id(self, client, customer_headers):
        response = await client.post(f"{API}/orders", json={"server_name": "x"}, headers=customer_headers)
        assert response.status_code == 422
        assert response.json()["kind"] == "ValidationError"

    async def test_unsupported_gateway(self, client, plan, customer_headers):
        order_id = await place_paid_order(client, customer_headers, plan.id)
        response = await client.post(
            f"{API}/orders/{order_id}/payments",
            json={"gateway": "bitcoin", "reference": "x", "amount": 1},
            headers=customer_headers,
        )
        assert response.status_code == 422

    @pytest.mark.parametrize(
        "payload",
        [
            '{"gateway": "paypal", "reference": "PAYID-1", "amount": NaN}',
            '{"gateway": "paypal", "reference": "PAYID-1", "amount": Infinity}',
            '{"gateway": "paypal", "reference": "PAYID-1", "amount": 1000000000}',
            '{"gateway": "paypal", "reference": "PAYID-1", "amount": 0}',
            '{"gateway": "paypal", "reference": "' + "R" * 101 + '", "amount": 9.99}',
        ],
    )
    async def test_out_of_range_payment_rejected(self, client, plan, customer_headers, payload):
        order_id = await place_paid_order(client, customer_headers, plan.id)
        response = await client.post(
            f"{API}/orders/{order_id}/payments",
            content=payload,
            headers={**customer_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 422
        assert response.json()["kind"] == "ValidationError"

    async def test_other_customer_sees_not_found(self, client, plan, customer_headers, other_headers):
        order_id = await place_paid_order(client, customer_headers, plan.id)

        response = await client.get(f"{API}/orders/{order_id}", headers=other_headers)
        assert response.status_code == 404
        assert response.json()["kind"] == "NotFound"

    async def test_request_id_round_trip(self, client, plan, customer_headers):
        response = await client.get(f"{API}/orders/999", headers={**customer_headers, "X-Request-ID": "req-abc"})
        assert response.headers["X-Request-ID"] == "req-abc"
        assert response.json()["request_id"] == "req-abc"


class TestAdminApi:

    async def test_customer_cannot_approve(self, client, plan, customer_headers, fake_provisioner):
        order_id = await place_paid_order(client, customer_headers, plan.id)

        response = await client.post(f"{API}/admin/orders/{order_id}/approve", headers=customer_headers)

        assert response.status_code == 403
        assert response.json()["kind"] == "Unauthorized"
        assert fake_provisioner.calls == []

    async def test_approve_activates(self, client, plan, customer_headers, admin_headers, fake_provisioner):
        order_id = await place_paid_order(client, customer_headers, plan.id)

        response = await client.get(f"{API}/admin/orders", headers=admin_headers)
        assert [o["id"] for o in response.json()["items"]] == [order_id]

        response = await client.post(f"{API}/admin/orders/{order_id}/approve", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {
            "order_id": order_id,
            "status": "active",
            "server_reference": 4242,
            "identifier": "a1b2c3d4",
            "simulated": False,
        }

        again = await client.post(f"{API}/admin/orders/{order_id}/approve", headers=admin_headers)
        assert again.json()["server_reference"] == 4242
        assert len(fake_provisioner.calls) == 1

        response = await client.get(f"{API}/orders/{order_id}", headers=customer_headers)
        assert response.json()["status"] == "active"
        assert response.json()["pterodactyl_server_id"] == 4242

        response = await client.post(f"{API}/admin/orders/{order_id}/reject", headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["kind"] == "Conflict"

    async def test_approve_specific_payment(self, client, plan, customer_headers, admin_headers):
        order_id = await place_paid_order(client, customer_headers, plan.id)
        payments = (await client.get(f"{API}/admin/orders/{order_id}/payments", headers=admin_headers)).json()["items"]

        response = await client.post(
            f"{API}/admin/orders/{order_id}/approve",
            json={"payment_id": payments[0]["id"]},
            headers=admin_headers,
        )
        assert response.status_code == 200

        payments = (await client.get(f"{API}/admin/orders/{order_id}/payments", headers=admin_headers)).json()["items"]
        assert payments[0]["status"] == "approved"
        assert payments[0]["completed_at"] is not None

    async def test_reject_cancels(self, client, plan, customer_headers, admin_headers, fake_provisioner):
        order_id = await place_paid_order(client, customer_headers, plan.id)

        response = await client.post(f"{API}/admin/orders/{order_id}/reject", headers=admin_headers)
        assert response.json() == {"order_id": order_id, "status": "cancelled", "payment_status": "rejected"}

        response = await client.post(f"{API}/admin/orders/{order_id}/approve", headers=admin_headers)
        assert response.status_code == 409
        assert fake_provisioner.calls == []

    async def test_provisioning_failure_then_retry(self, client, plan, customer_headers, admin_headers, provisioning_error):
        failing = FakeProvisioner(error=provisioning_error)
        app.dependency_overrides[get_provisioner] = lambda: failing
        order_id = await place_paid_order(client, customer_headers, plan.id)

        response = await client.post(f"{API}/admin/orders/{order_id}/approve", headers=admin_headers)
        assert response.status_code == 502
        body = response.json()
        assert body["kind"] == "ProvisioningError"
        assert "panel exploded" in body["message"]
        assert body["order_id"] == order_id

        response = await client.get(f"{API}/orders/{order_id}", headers=customer_headers)
        assert response.json()["status"] == "failed"
        assert response.json()["payment_status"] == "approved"

        response = await client.get(f"{API}/admin/orders/{order_id}", headers=admin_headers)
        assert "panel exploded" in response.json()["failure_reason"]

        failing.error = None
        response = await client.post(f"{API}/admin/orders/{order_id}/retry", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "active"

    async def test_unknown_order(self, client, admin_headers):
        response = await client.post(f"{API}/admin/orders/404/approve", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["kind"] == "NotFound"


class TestAuditApi:

    async def test_admin_reads_order_trail(self, client, plan, customer_headers, admin_headers):
        order_id = await place_paid_order(client, customer_headers, plan.id)
        await client.post(f"{API}/admin/orders/{order_id}/approve", headers=admin_headers)

        response = await client.get(
            f"{API}/audit-logs",
            params={"resource_type": "order", "resource_id": str(order_id)},
            headers=admin_headers,
        )
        actions = [item["action"] for item in response.json()["items"]]
        assert actions == ["provisioning_succeeded", "approve_payment", "record_payment", "submit_order"]

    async def test_customer_forbidden(self, client, customer_headers):
        response = await client.get(f"{API}/audit-logs", headers=customer_headers)
        assert response.status_code == 403


class TestHealth:

    async def test_reports_dependencies(self, client):
        response = await client.get("/health")
        body = response.json()

        assert body["dependencies"]["database"]["ok"] is True
        assert body["dependencies"]["redis"]["ok"] is False
        assert body["dependencies"]["panel"]["mode"] == "simulated"
        assert body["status"] == "degraded"

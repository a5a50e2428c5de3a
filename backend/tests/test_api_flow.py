"""
HTTP flow tests.

Drive a full trip through the /v1 API: publish, book, pay, ride, settle.
"""

import pytest

from backend.app.models.enums import UserRole

DRIVER = 10
RIDER = 20
ADMIN = 1


@pytest.fixture
async def seeded(make_driver, make_passenger):
    await make_driver(DRIVER)
    await make_passenger(RIDER)


def route_payload(new_route, **kwargs):
    return new_route(**kwargs).model_dump(mode="json")


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_requires_bearer_token(client):
    response = await client.get("/v1/bookings/me")
    assert response.status_code in (401, 403)

    response = await client.get("/v1/bookings/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_role_gate(client, auth, seeded, new_route):
    response = await client.post("/v1/routes", json=route_payload(new_route), headers=auth(RIDER, UserRole.PASSENGER))
    assert response.status_code == 403

    response = await client.get("/v1/admin/payouts", headers=auth(DRIVER, UserRole.DRIVER))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_full_trip_over_http(client, auth, seeded, new_route, clock, gateway):
    driver = auth(DRIVER, UserRole.DRIVER)
    rider = auth(RIDER, UserRole.PASSENGER)
    admin = auth(ADMIN, UserRole.ADMIN)

    response = await client.post("/v1/routes", json=route_payload(new_route, price=20), headers=driver)
    assert response.status_code == 201, response.text
    route = response.json()

    response = await client.post(
        "/v1/bookings",
        json={"route_id": route["route_id"], "payment_method": "PAYPAL",
              "pickup_lat": 4.65, "pickup_lng": -74.065, "pickup_address": "Library"},
        headers=rider,
    )
    assert response.status_code == 201, response.text
    booking = response.json()

    response = await client.get(f"/v1/routes/{route['route_id']}", headers=rider)
    assert response.json()["seats_available"] == route["seats_available"] - 1
    assert len(response.json()["stops"]) == 3

    headers = {**rider, "Idempotency-Key": "create-pay-01"}
    response = await client.post("/v1/payments", json={"booking_id": booking["booking_id"], "method": "PAYPAL"},
                                 headers=headers)
    assert response.status_code == 201, response.text
    payment = response.json()
    replay = await client.post("/v1/payments", json={"booking_id": booking["booking_id"], "method": "PAYPAL"},
                               headers=headers)
    assert replay.json()["payment_id"] == payment["payment_id"]

    response = await client.post(f"/v1/payments/{payment['payment_id']}/paypal/order", headers=rider)
    order = response.json()
    assert order["approval_url"]

    response = await client.post(
        f"/v1/payments/{payment['payment_id']}/paypal/capture",
        json={"gateway_order_id": order["gateway_order_id"]},
        headers=rider,
    )
    assert response.json()["status"] == "PAID"

    response = await client.post(
        f"/v1/bookings/{booking['booking_id']}/verify-otp", json={"otp": booking["otp"]}, headers=driver
    )
    assert response.status_code == 200, response.text

    response = await client.patch(f"/v1/bookings/{booking['booking_id']}/complete", headers=driver)
    assert response.json()["route_finalized"] is True

    response = await client.post("/v1/admin/payouts/generate", json={"period": "2025-01"}, headers=admin)
    assert response.status_code == 201, response.text
    payout = response.json()["payouts"][0]
    assert payout["amount"] == 20.0

    response = await client.post(f"/v1/admin/payouts/{payout['payout_id']}/paypal", headers=admin)
    assert response.json()["status"] == "PAID"

    response = await client.get("/v1/payouts/me", headers=driver)
    assert [p["status"] for p in response.json()] == ["PAID"]

    response = await client.get("/v1/admin/audit-logs", params={"action": "WITHDRAWAL_COMPLETED"}, headers=admin)
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_error_responses_use_app_error_shape(client, auth, seeded, new_route):
    driver = auth(DRIVER, UserRole.DRIVER)
    rider = auth(RIDER, UserRole.PASSENGER)
    route = (await client.post("/v1/routes", json=route_payload(new_route), headers=driver)).json()

    first = await client.post("/v1/bookings", json={"route_id": route["route_id"], "payment_method": "CASH"},
                              headers=rider)
    assert first.status_code == 201
    duplicate = await client.post("/v1/bookings", json={"route_id": route["route_id"], "payment_method": "CASH"},
                                  headers=rider)
    assert duplicate.status_code == 409
    assert duplicate.json()["error_code"] == "ERR_CONFLICT_001"

    missing = await client.get("/v1/routes/RTE_ZZZZZZZZ", headers=rider)
    assert missing.status_code == 404

    malformed = await client.get("/v1/routes/not-an-id", headers=rider)
    assert malformed.status_code == 422


@pytest.mark.asyncio
async def test_gateway_failure_is_502_without_provider_detail(client, auth, seeded, new_route, gateway):
    driver = auth(DRIVER, UserRole.DRIVER)
    rider = auth(RIDER, UserRole.PASSENGER)
    route = (await client.post("/v1/routes", json=route_payload(new_route), headers=driver)).json()
    booking = (await client.post("/v1/bookings", json={"route_id": route["route_id"], "payment_method": "PAYPAL"},
                                 headers=rider)).json()
    payment = (await client.post("/v1/payments", json={"booking_id": booking["booking_id"], "method": "PAYPAL"},
                                 headers=rider)).json()

    gateway.fail("create_order", "INTERNAL_SERVER_ERROR from api-m.paypal.com")
    response = await client.post(f"/v1/payments/{payment['payment_id']}/paypal/order", headers=rider)

    assert response.status_code == 502
    assert "paypal.com" not in response.text


@pytest.mark.asyncio
async def test_invalid_idempotency_key_is_rejected(client, auth, seeded, new_route):
    driver = auth(DRIVER, UserRole.DRIVER)
    rider = auth(RIDER, UserRole.PASSENGER)
    route = (await client.post("/v1/routes", json=route_payload(new_route), headers=driver)).json()
    booking = (await client.post("/v1/bookings", json={"route_id": route["route_id"], "payment_method": "CASH"},
                                 headers=rider)).json()

    response = await client.post(
        "/v1/payments", json={"booking_id": booking["booking_id"], "method": "CASH"},
        headers={**rider, "Idempotency-Key": "bad key!"},
    )
    assert response.status_code == 400

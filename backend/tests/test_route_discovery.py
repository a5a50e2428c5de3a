"""
Route discovery and booking read tests.

Passenger search (filters and 1 km stop radius), the driver's route list,
route and booking maps, and booking detail.
"""

from datetime import time, timedelta

import pytest

from backend.app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from backend.app.models.booking_enums import PaymentMethod
from backend.app.models.enums import UserRole
from backend.app.models.route_enums import Campus, RouteStatus
from backend.app.schemas.route import StopIn

DRIVER = 10
OTHER_DRIVER = 11
RIDER = 20
STRANGER = 21

# Stops of the default route are at (4.60, -74.08) and (4.70, -74.05).
NEAR_CAMPUS_GATE = (4.6045, -74.0810)
FAR_AWAY = (4.6500, -74.1500)


@pytest.fixture
async def people(make_driver, make_passenger):
    await make_driver(DRIVER)
    await make_driver(OTHER_DRIVER)
    await make_passenger(RIDER)
    await make_passenger(STRANGER)


@pytest.mark.asyncio
async def test_search_keeps_routes_with_a_stop_nearby(services, people, new_route):
    near = await services.routes.create_route(DRIVER, new_route())
    await services.routes.create_route(OTHER_DRIVER, new_route(stops=[
        StopIn(lat=4.70, lng=-74.16, address="North terminal"),
    ]))

    result = await services.routes.search_available_routes(lat=NEAR_CAMPUS_GATE[0], lng=NEAR_CAMPUS_GATE[1])

    assert result["total"] == 1
    assert [r["route_id"] for r in result["routes"]] == [near["route_id"]]

    nothing = await services.routes.search_available_routes(lat=FAR_AWAY[0], lng=FAR_AWAY[1])
    assert nothing == {"routes": [], "total": 0}

    wider = await services.routes.search_available_routes(lat=FAR_AWAY[0], lng=FAR_AWAY[1], radius_km=10)
    assert wider["total"] == 2


@pytest.mark.asyncio
async def test_search_filters(services, people, new_route, clock):
    small = await services.routes.create_route(DRIVER, new_route(seats=1))
    later = await services.routes.create_route(
        DRIVER, new_route(seats=3, departure_date=clock.now.date() + timedelta(days=3)),
    )
    await services.routes.create_route(OTHER_DRIVER, new_route(seats=3))
    cancelled = await services.routes.create_route(OTHER_DRIVER, new_route(seats=3))
    await services.routes.cancel_route(cancelled["route_id"], OTHER_DRIVER)

    everything = await services.routes.search_available_routes()
    assert everything["total"] == 3
    assert cancelled["route_id"] not in [r["route_id"] for r in everything["routes"]]

    two_seats = await services.routes.search_available_routes(seats=2)
    assert small["route_id"] not in [r["route_id"] for r in two_seats["routes"]]

    dated = await services.routes.search_available_routes(departure_date=later["departure_date"])
    assert [r["route_id"] for r in dated["routes"]] == [later["route_id"]]

    by_destination = await services.routes.search_available_routes(destination="downtown")
    assert by_destination["total"] == 3
    assert (await services.routes.search_available_routes(destination="airport"))["total"] == 0

    assert (await services.routes.search_available_routes(origin=Campus.EL_BOSQUE))["total"] == 0


@pytest.mark.asyncio
async def test_search_hides_departed_and_full_routes(services, people, new_route, clock):
    today = await services.routes.create_route(
        DRIVER, new_route(seats=1, departure_date=clock.now.date(), departure_time=time(9, 0)),
    )
    tomorrow = await services.routes.create_route(DRIVER, new_route(seats=1))

    await services.bookings.create_booking(RIDER, tomorrow["route_id"], PaymentMethod.CASH)
    clock.advance(hours=2)

    result = await services.routes.search_available_routes()
    assert result["total"] == 0
    assert today["route_id"] not in [r["route_id"] for r in result["routes"]]


@pytest.mark.asyncio
async def test_search_pages_after_the_radius_filter(services, people, new_route):
    created = [await services.routes.create_route(DRIVER, new_route()) for _ in range(3)]

    page = await services.routes.search_available_routes(
        lat=NEAR_CAMPUS_GATE[0], lng=NEAR_CAMPUS_GATE[1], limit=2, offset=2,
    )

    assert page["total"] == 3
    assert [r["route_id"] for r in page["routes"]] == [created[2]["route_id"]]


@pytest.mark.asyncio
async def test_search_requires_both_coordinates(services):
    with pytest.raises(ValidationError):
        await services.routes.search_available_routes(lat=4.6)


@pytest.mark.asyncio
async def test_my_routes_leave_out_cancelled_unless_asked(services, people, new_route):
    active = await services.routes.create_route(DRIVER, new_route())
    cancelled = await services.routes.create_route(DRIVER, new_route())
    await services.routes.cancel_route(cancelled["route_id"], DRIVER)
    await services.routes.create_route(OTHER_DRIVER, new_route())

    mine = await services.routes.list_my_routes(DRIVER)
    assert mine["total"] == 1
    assert [r["route_id"] for r in mine["routes"]] == [active["route_id"]]
    assert len(mine["routes"][0]["stops"]) == 2

    only_cancelled = await services.routes.list_my_routes(DRIVER, RouteStatus.CANCELLED)
    assert [r["route_id"] for r in only_cancelled["routes"]] == [cancelled["route_id"]]

    with pytest.raises(NotFoundError):
        await services.routes.list_my_routes(RIDER)


@pytest.mark.asyncio
async def test_route_map_lists_ordered_stops(services, people, new_route):
    route = await services.routes.create_route(DRIVER, new_route())
    await services.bookings.create_booking(
        RIDER, route["route_id"], PaymentMethod.CASH, pickup_lat=4.65, pickup_lng=-74.065, pickup_address="Library",
    )

    route_map = await services.routes.get_route_map(route["route_id"])

    assert [s["address"] for s in route_map["stops"]] == ["Campus gate", "Library", "Downtown terminal"]
    assert [s["order"] for s in route_map["stops"]] == [1, 2, 3]

    with pytest.raises(NotFoundError):
        await services.routes.get_route_map("RTE_ZZZZZZZZ")


@pytest.mark.asyncio
async def test_booking_detail_is_private_to_the_passenger(services, people, new_route):
    route = await services.routes.create_route(DRIVER, new_route())
    booking = await services.bookings.create_booking(RIDER, route["route_id"], PaymentMethod.CASH)
    await services.payments.create_payment(RIDER, booking["booking_id"], PaymentMethod.CASH)

    detail = await services.bookings.get_booking(RIDER, booking["booking_id"])

    assert detail["otp"] == booking["otp"]
    assert detail["payment_status"] == "PENDING"
    assert detail["route"]["route_id"] == route["route_id"]
    assert len(detail["route"]["stops"]) == 2

    with pytest.raises(NotFoundError):
        await services.bookings.get_booking(STRANGER, booking["booking_id"])


@pytest.mark.asyncio
async def test_booking_map_only_while_confirmed(services, people, new_route):
    route = await services.routes.create_route(DRIVER, new_route())
    booking = await services.bookings.create_booking(RIDER, route["route_id"], PaymentMethod.CASH)

    booking_map = await services.bookings.get_booking_map(RIDER, booking["booking_id"])
    assert booking_map["booking_id"] == booking["booking_id"]
    assert booking_map["route_id"] == route["route_id"]
    assert len(booking_map["stops"]) == 2

    await services.bookings.cancel_booking(RIDER, booking["booking_id"])
    with pytest.raises(ForbiddenError):
        await services.bookings.get_booking_map(RIDER, booking["booking_id"])
    assert (await services.bookings.get_booking(RIDER, booking["booking_id"]))["otp"] is None


@pytest.mark.asyncio
async def test_discovery_over_http(client, auth, people, new_route):
    driver = auth(DRIVER, UserRole.DRIVER)
    rider = auth(RIDER, UserRole.PASSENGER)
    route = (await client.post("/v1/routes", json=new_route().model_dump(mode="json"), headers=driver)).json()

    response = await client.get(
        "/v1/routes/available", params={"lat": NEAR_CAMPUS_GATE[0], "lng": NEAR_CAMPUS_GATE[1]}, headers=rider,
    )
    assert response.status_code == 200, response.text
    assert response.json()["total"] == 1

    response = await client.get("/v1/routes/available", params={"radius_km": 50}, headers=rider)
    assert response.status_code == 422

    response = await client.get("/v1/routes/my", headers=driver)
    assert [r["route_id"] for r in response.json()["routes"]] == [route["route_id"]]
    assert (await client.get("/v1/routes/my", headers=rider)).status_code == 403

    response = await client.get(f"/v1/routes/{route['route_id']}/map", headers=rider)
    assert len(response.json()["stops"]) == 2

    booking = (await client.post("/v1/bookings", json={"route_id": route["route_id"], "payment_method": "CASH"},
                                 headers=rider)).json()

    response = await client.get(f"/v1/bookings/{booking['booking_id']}", headers=rider)
    assert response.status_code == 200, response.text
    assert response.json()["route"]["route_id"] == route["route_id"]

    response = await client.get(f"/v1/bookings/{booking['booking_id']}/map", headers=rider)
    assert response.json()["booking_id"] == booking["booking_id"]

    stranger = auth(STRANGER, UserRole.PASSENGER)
    assert (await client.get(f"/v1/bookings/{booking['booking_id']}", headers=stranger)).status_code == 404

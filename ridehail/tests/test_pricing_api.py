"""
Pricing and pricing administration API tests.
"""

from decimal import Decimal


async def test_plans_are_public(client, catalog):
    response = await client.get("/v1/pricing/plans")

    assert response.status_code == 200
    plans = response.json()
    assert [p["name"] for p in plans] == ["comfort", "economy", "premium"]
    economy = plans[1]
    assert Decimal(economy["base_fare"]) == Decimal("2.50")
    assert Decimal(economy["per_km_rate"]) == Decimal("2.01")


async def test_calculate_quote(client, auth, catalog):
    response = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json={
        "distance": 10,
        "duration": 20,
        "plan_name": "economy",
        "pickup_time": "2024-03-04T12:00:00",
    })

    assert response.status_code == 200, response.text
    data = response.json()
    assert Decimal(data["estimated_price"]) == Decimal("28.60")
    assert data["is_peak"] is False
    assert [line["type"] for line in data["adjustments"]] == ["base_fare", "distance", "time", "booking_fee"]


async def test_calculate_in_rush_hour_adds_surge(client, auth, catalog):
    response = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json={
        "distance": 10,
        "duration": 20,
        "plan_name": "economy",
        "pickup_time": "2024-03-04T17:30:00",
    })

    data = response.json()
    assert data["is_peak"] is True
    # Subtotal 27.60 surged by the 1.5 floor
    assert Decimal(data["breakdown"]["surge_fee"]) == Decimal("13.80")
    assert Decimal(data["estimated_price"]) == Decimal("42.40")


async def test_calculate_with_promo(client, auth, catalog):
    response = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json={
        "distance": 10,
        "duration": 20,
        "pickup_time": "2024-03-04T12:00:00",
        "promo_code": "save5",
    })

    data = response.json()
    assert data["promo_applied"] is True
    assert data["promo_code"] == "SAVE5"
    assert Decimal(data["estimated_price"]) == Decimal("23.60")


async def test_invalid_promo_does_not_fail_quote(client, auth, catalog):
    response = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json={
        "distance": 10,
        "duration": 20,
        "pickup_time": "2024-03-04T12:00:00",
        "promo_code": "BOGUS",
    })

    assert response.status_code == 200
    assert response.json()["promo_applied"] is False
    assert response.json()["promo_reason"] == "code not found"
    assert Decimal(response.json()["estimated_price"]) == Decimal("28.60")


async def test_calculate_rejects_negative_distance(client, auth, catalog):
    response = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json={"distance": -1})

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_VALIDATION_002"


async def test_calculate_unknown_plan(client, auth, catalog):
    response = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json={
        "distance": 3, "plan_name": "rickshaw",
    })

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_003"


async def test_validate_promo(client, auth, catalog):
    headers = auth("rider-1")

    ok = await client.post("/v1/pricing/validate-promo", headers=headers, json={"code": "welcome10", "trip_value": "40.00"})
    assert ok.json()["valid"] is True
    assert Decimal(ok.json()["discount"]) == Decimal("4.00")

    low = await client.post("/v1/pricing/validate-promo", headers=headers, json={"code": "SAVE5", "trip_value": "12"})
    assert low.json()["valid"] is False
    assert low.json()["reason"] == "minimum trip value of $20.00 required"


async def test_validate_promo_for_other_user_needs_admin(client, auth, catalog):
    body = {"code": "SAVE5", "trip_value": "25", "user_id": "rider-2"}

    rider = await client.post("/v1/pricing/validate-promo", headers=auth("rider-1"), json=body)
    admin = await client.post("/v1/pricing/validate-promo", headers=auth("ops", "admin"), json=body)

    assert rider.status_code == 403
    assert admin.status_code == 200
    assert admin.json()["valid"] is True


async def test_admin_routes_require_admin(client, auth, catalog):
    response = await client.get("/v1/admin/pricing/promos", headers=auth("rider-1"))

    assert response.status_code == 403


async def test_admin_plan_upsert_and_deactivate(client, auth, catalog):
    admin = auth("ops", "admin")

    created = await client.put("/v1/admin/pricing/plans", headers=admin, json={
        "name": "XL",
        "display_name": "Extra Large",
        "vehicle_type": "comfort",
        "base_fare": "4.00",
        "per_km_rate": "3.10",
        "per_minute_rate": "0.40",
        "minimum_fare": "9.00",
    })
    assert created.status_code == 200, created.text
    assert created.json()["name"] == "xl"

    plans = await client.get("/v1/pricing/plans")
    assert "xl" in [p["name"] for p in plans.json()]

    removed = await client.delete("/v1/admin/pricing/plans/xl", headers=admin)
    assert removed.status_code == 204

    plans = await client.get("/v1/pricing/plans")
    assert "xl" not in [p["name"] for p in plans.json()]

    missing = await client.delete("/v1/admin/pricing/plans/xl", headers=admin)
    assert missing.status_code == 404


async def test_admin_rule_changes_quotes(client, auth, catalog):
    admin = auth("ops", "admin")
    rule = await client.post("/v1/admin/pricing/rules", headers=admin, json={
        "name": "Airport fee",
        "rule_type": "surge",
        "adjustment_type": "fixed_amount",
        "adjustment_value": "4.00",
        "priority": 5,
        "applicable_plans": ["economy"],
    })
    assert rule.status_code == 201, rule.text
    rule_id = rule.json()["id"]

    body = {"distance": 10, "duration": 20, "pickup_time": "2024-03-04T12:00:00"}
    quoted = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json=body)
    assert Decimal(quoted.json()["estimated_price"]) == Decimal("32.60")
    assert "rule:surge" in [line["type"] for line in quoted.json()["adjustments"]]

    assert (await client.delete(f"/v1/admin/pricing/rules/{rule_id}", headers=admin)).status_code == 204
    quoted = await client.post("/v1/pricing/calculate", headers=auth("rider-1"), json=body)
    assert Decimal(quoted.json()["estimated_price"]) == Decimal("28.60")


async def test_admin_promo_creation(client, auth, catalog):
    admin = auth("ops", "admin")
    body = {
        "code": "spring25",
        "name": "Spring",
        "discount_type": "percentage",
        "discount_value": "25",
        "max_discount": "10",
    }

    created = await client.post("/v1/admin/pricing/promos", headers=admin, json=body)
    assert created.status_code == 201, created.text
    assert created.json()["code"] == "SPRING25"
    assert created.json()["used_count"] == 0

    duplicate = await client.post("/v1/admin/pricing/promos", headers=admin, json=body)
    assert duplicate.status_code == 409

    too_much = await client.post("/v1/admin/pricing/promos", headers=admin, json={**body, "code": "X2", "discount_value": "150"})
    assert too_much.status_code == 422

    listed = await client.get("/v1/admin/pricing/promos", headers=admin)
    assert [p["code"] for p in listed.json()] == ["SAVE5", "SPRING25", "WELCOME10"]

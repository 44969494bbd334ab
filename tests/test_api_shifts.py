"""
בדיקות API המשמרות — מקצה לקצה דרך FastAPI
"""
from decimal import Decimal

import pytest

from tests.conftest import auth_headers


class TestShiftLifecycleAPI:

    @pytest.mark.asyncio
    async def test_full_shift_flow(self, test_client, attendant, nozzle, cash, card):
        headers = auth_headers(attendant)

        response = await test_client.post(
            "/api/shifts",
            json={"shift_name": "Morning Shift - 19 Oct 2026", "nozzle_ids": [nozzle.id]},
            headers=headers,
        )
        assert response.status_code == 201
        shift = response.json()
        assert shift["status"] == "in_progress"
        assert shift["version"] == 1
        reading = shift["readings"][0]
        assert reading["nozzle_code"] == "N1"
        assert isinstance(reading["opening_reading"], str)
        assert Decimal(reading["opening_reading"]) == Decimal("1000")
        assert reading["closing_reading"] is None

        response = await test_client.patch(
            f"/api/shifts/{shift['id']}/readings/{reading['id']}",
            json={"test_qty": "0.5", "closing_reading": "1091"},
            headers=headers,
        )
        assert response.status_code == 200
        assert Decimal(response.json()["readings"][0]["fuel_dispensed"]) == Decimal("90.5")

        response = await test_client.post(
            f"/api/shifts/{shift['id']}/payments",
            json={"payment_method_id": cash.id, "amount": "5000"},
            headers=headers,
        )
        assert response.status_code == 201
        response = await test_client.post(
            f"/api/shifts/{shift['id']}/payments",
            json={"payment_method_id": card.id, "amount": "4000"},
            headers=headers,
        )
        payments = response.json()
        assert Decimal(payments["total_payment_collected"]) == Decimal("9000")
        assert len(payments["payments"]) == 2

        response = await test_client.get(f"/api/shifts/{shift['id']}/summary", headers=headers)
        assert response.status_code == 200
        summary = response.json()
        assert Decimal(summary["total_fuel_sales"]) == Decimal("9050")
        assert Decimal(summary["discrepancy"]) == Decimal("-50")
        assert summary["cached_total_matches"] is True

        response = await test_client.post(
            f"/api/shifts/{shift['id']}/complete",
            json={"notes": "done"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        response = await test_client.get("/api/shifts/active", headers=headers)
        assert response.status_code == 404

        response = await test_client.get("/api/shifts", headers=headers)
        assert response.status_code == 200
        history = response.json()
        assert history["total"] == 1
        assert history["items"][0]["id"] == shift["id"]

    @pytest.mark.asyncio
    async def test_active_shift(self, test_client, attendant, nozzle):
        headers = auth_headers(attendant)
        created = await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )

        response = await test_client.get("/api/shifts/active", headers=headers)

        assert response.status_code == 200
        assert response.json()["id"] == created.json()["id"]
        assert " Shift - " in response.json()["shift_name"]

    @pytest.mark.asyncio
    async def test_delete_and_update_payment(self, test_client, attendant, nozzle, cash):
        headers = auth_headers(attendant)
        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )).json()
        added = (await test_client.post(
            f"/api/shifts/{shift['id']}/payments",
            json={"payment_method_id": cash.id, "amount": "100.25"},
            headers=headers,
        )).json()
        payment_id = added["payments"][0]["id"]

        response = await test_client.put(
            f"/api/shifts/{shift['id']}/payments/{payment_id}",
            json={"amount": "80"},
            headers=headers,
        )
        assert Decimal(response.json()["total_payment_collected"]) == Decimal("80")

        response = await test_client.delete(
            f"/api/shifts/{shift['id']}/payments/{payment_id}",
            headers=headers,
        )
        assert response.status_code == 200
        assert Decimal(response.json()["total_payment_collected"]) == Decimal("0")
        assert response.json()["payments"] == []

    @pytest.mark.asyncio
    async def test_cash_breakdown_and_clearing_fields(
        self, test_client, attendant, nozzle, cash, cash_notes
    ):
        headers = auth_headers(attendant)
        response = await test_client.get("/api/shifts/denominations", headers=headers)
        assert response.status_code == 200
        assert [Decimal(d["value"]) for d in response.json()] == [Decimal("500"), Decimal("100")]

        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )).json()
        response = await test_client.post(
            f"/api/shifts/{shift['id']}/payments",
            json={
                "payment_method_id": cash.id,
                "amount": "1205.50",
                "quantity": "12",
                "denominations": [
                    {"denomination_id": cash_notes[500], "count": 2},
                    {"denomination_id": cash_notes[100], "count": 2},
                ],
                "coins_amount": "5.50",
            },
            headers=headers,
        )
        assert response.status_code == 201
        payment = response.json()["payments"][0]
        assert Decimal(payment["coins_amount"]) == Decimal("5.50")
        assert {d["denomination_id"]: d["count"] for d in payment["denominations"]} == {
            cash_notes[500]: 2,
            cash_notes[100]: 2,
        }

        # null מפורש מנקה את quantity, הפירוט נשאר
        response = await test_client.put(
            f"/api/shifts/{shift['id']}/payments/{payment['id']}",
            json={"quantity": None},
            headers=headers,
        )
        assert response.status_code == 200
        updated = response.json()["payments"][0]
        assert updated["quantity"] is None
        assert Decimal(updated["coins_amount"]) == Decimal("5.50")
        assert len(updated["denominations"]) == 2

        response = await test_client.put(
            f"/api/shifts/{shift['id']}/payments/{payment['id']}",
            json={"amount": "700", "denominations": [], "coins_amount": None},
            headers=headers,
        )
        assert response.status_code == 200
        updated = response.json()["payments"][0]
        assert Decimal(updated["amount"]) == Decimal("700")
        assert updated["denominations"] == []
        assert updated["coins_amount"] is None

    @pytest.mark.asyncio
    async def test_breakdown_mismatch_envelope(
        self, test_client, attendant, nozzle, cash, cash_notes
    ):
        headers = auth_headers(attendant)
        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )).json()

        response = await test_client.post(
            f"/api/shifts/{shift['id']}/payments",
            json={
                "payment_method_id": cash.id,
                "amount": "600",
                "denominations": [{"denomination_id": cash_notes[500], "count": 1}],
            },
            headers=headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["details"]["field"] == "denominations"
        assert Decimal(error["details"]["breakdown_total"]) == Decimal("500")


class TestShiftErrorsAPI:

    @pytest.mark.asyncio
    async def test_second_shift_conflict_envelope(self, test_client, attendant, nozzle, second_nozzle):
        headers = auth_headers(attendant)
        second_id = second_nozzle.id
        await test_client.post("/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers)

        response = await test_client.post(
            "/api/shifts",
            json={"nozzle_ids": [second_id]},
            headers={**headers, "X-Correlation-ID": "corr-123"},
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"]["code"] == "ERR_2002"
        assert body["error"]["message"] == "You already have an active shift"
        assert response.headers["X-Correlation-ID"] == "corr-123"

    @pytest.mark.asyncio
    async def test_busy_nozzle(self, test_client, attendant, other_attendant, nozzle):
        nozzle_id = nozzle.id
        other_headers = auth_headers(other_attendant)
        await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle_id]}, headers=auth_headers(attendant)
        )

        response = await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle_id]}, headers=other_headers
        )

        assert response.status_code == 409
        assert response.json()["error"]["details"]["nozzle_codes"] == ["N1"]

    @pytest.mark.asyncio
    async def test_closing_below_opening(self, test_client, attendant, nozzle):
        headers = auth_headers(attendant)
        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )).json()

        response = await test_client.patch(
            f"/api/shifts/{shift['id']}/readings/{shift['readings'][0]['id']}",
            json={"closing_reading": "990"},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_3004"

    @pytest.mark.asyncio
    async def test_complete_without_closing(self, test_client, attendant, nozzle):
        headers = auth_headers(attendant)
        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )).json()

        response = await test_client.post(f"/api/shifts/{shift['id']}/complete", headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_2004"

    @pytest.mark.asyncio
    async def test_stale_version(self, test_client, attendant, nozzle, cash):
        headers = auth_headers(attendant)
        cash_id = cash.id
        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )).json()
        await test_client.post(
            f"/api/shifts/{shift['id']}/payments",
            json={"payment_method_id": cash_id, "amount": "1", "expected_version": 1},
            headers=headers,
        )

        response = await test_client.post(
            f"/api/shifts/{shift['id']}/payments",
            json={"payment_method_id": cash_id, "amount": "1", "expected_version": 1},
            headers=headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_2005"

    @pytest.mark.asyncio
    async def test_other_attendant_forbidden(self, test_client, attendant, other_attendant, nozzle):
        other_headers = auth_headers(other_attendant)
        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=auth_headers(attendant)
        )).json()

        response = await test_client.get(f"/api/shifts/{shift['id']}", headers=other_headers)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "ERR_1005"

    @pytest.mark.asyncio
    async def test_empty_nozzle_list_is_422(self, test_client, attendant):
        response = await test_client.post(
            "/api/shifts", json={"nozzle_ids": []}, headers=auth_headers(attendant)
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_blank_shift_name_rejected(self, test_client, attendant, nozzle):
        headers = auth_headers(attendant)

        response = await test_client.post(
            "/api/shifts",
            json={"shift_name": "   ", "nozzle_ids": [nozzle.id]},
            headers=headers,
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "ERR_1001"
        assert error["details"]["field"] == "shift_name"
        assert (await test_client.get("/api/shifts/active", headers=headers)).status_code == 404

    @pytest.mark.asyncio
    async def test_page_size_limit(self, test_client, attendant):
        response = await test_client.get(
            "/api/shifts", params={"limit": 100000}, headers=auth_headers(attendant)
        )

        assert response.status_code == 422


class TestAuthAPI:

    @pytest.mark.asyncio
    async def test_missing_token(self, test_client):
        response = await test_client.get("/api/shifts/active")

        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_invalid_token(self, test_client):
        response = await test_client.get(
            "/api/shifts/active", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_inactive_user(self, test_client, user_factory, station):
        user = await user_factory(station_id=station.id, username="gone", is_active=False)

        response = await test_client.get("/api/shifts/active", headers=auth_headers(user))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_suggested_name(self, test_client, attendant):
        response = await test_client.get(
            "/api/shifts/suggested-name", headers=auth_headers(attendant)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["shift_type"] in ("morning", "evening", "night")
        assert body["shift_name"].startswith(body["shift_type"].capitalize())


class TestReviewAPI:

    @pytest.mark.asyncio
    async def test_manager_archives_completed_shift(self, test_client, attendant, manager, nozzle):
        headers = auth_headers(attendant)
        manager_headers = auth_headers(manager)
        shift = (await test_client.post(
            "/api/shifts", json={"nozzle_ids": [nozzle.id]}, headers=headers
        )).json()
        await test_client.patch(
            f"/api/shifts/{shift['id']}/readings/{shift['readings'][0]['id']}",
            json={"closing_reading": "1001"},
            headers=headers,
        )
        await test_client.post(f"/api/shifts/{shift['id']}/complete", json={}, headers=headers)

        response = await test_client.post(f"/api/shifts/{shift['id']}/archive", headers=headers)
        assert response.status_code == 403

        response = await test_client.post(
            f"/api/shifts/{shift['id']}/archive", headers=manager_headers
        )
        assert response.status_code == 200
        assert response.json()["status"] == "archived"

        response = await test_client.post(
            f"/api/shifts/{shift['id']}/verify",
            json={"approved": True},
            headers=manager_headers,
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ERR_6001"


class TestHealthAPI:

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Correlation-ID" in response.headers

"""API endpoint tests against an in-memory database."""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from estate_payroll import __version__
from estate_payroll.api.app import create_app
from estate_payroll.api.dependencies import get_db_session
from estate_payroll.models import WorkOrder, WorkOrderWorker, Worker
from estate_payroll.registry import RateRegistry

from conftest import RATES_FROM, SOCSO_RANGES

pytestmark = pytest.mark.asyncio

ACTOR = {"X-Actor": "estate.manager"}


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client bound to the test database."""
    app = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, int]:
    """Committed rates, workers and work orders in each status."""
    async with session_factory() as session:
        registry = RateRegistry(session, strict_ranges=False)
        await registry.create_entry(
            code="EPF",
            name="EPF",
            calculation_kind="percentage",
            employee_rate=Decimal("11"),
            employer_rate=Decimal("13"),
            effective_from=RATES_FROM,
        )
        await registry.create_entry(
            code="SOCSO",
            name="SOCSO",
            calculation_kind="wage_range",
            effective_from=RATES_FROM,
            wage_ranges=SOCSO_RANGES,
        )

        local = Worker(name="Ahmad bin Ali", nationality="local", is_active=True)
        session.add(local)
        await session.flush()

        def order(status: str) -> WorkOrder:
            return WorkOrder(
                status=status,
                rate_type="normal",
                rate=Decimal("100.00"),
                block_number="B-12",
                start_date=date(2025, 11, 1),
                completion_date=date(2025, 11, 18),
                workers=[WorkOrderWorker(worker_id=local.id, amount=Decimal("3500.00"))],
                items=[],
            )

        pending, ongoing = order("pending"), order("ongoing")
        session.add_all([pending, ongoing])
        await session.commit()
        return {"worker": local.id, "pending": pending.id, "ongoing": ongoing.id}


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Health endpoint should return 200."""
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["version"] == __version__

    async def test_ready_with_seeded_rates(self, client: AsyncClient, seeded):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready", "active_deductions": 2}

    async def test_not_ready_without_rates(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"


class TestDeductionEndpoints:
    """Test registry endpoints."""

    async def test_create_entry(self, client: AsyncClient):
        """POST /api/v1/deductions should create an entry."""
        response = await client.post(
            "/api/v1/deductions",
            json={
                "code": "SIP",
                "name": "Employment Insurance",
                "calculation_kind": "percentage",
                "employee_rate": "0.2",
                "employer_rate": "0.2",
                "applies_to": "local",
                "effective_from": "2025-01-01",
            },
        )
        assert response.status_code == 201

        data = response.json()
        assert data["code"] == "SIP"
        assert data["applies_to"] == "local"
        assert data["effective_until"] is None
        assert Decimal(data["employee_rate"]) == Decimal("0.2")

    async def test_duplicate_open_entry_conflicts(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/deductions",
            json={
                "code": "EPF",
                "name": "EPF",
                "employee_rate": "9",
                "employer_rate": "13",
                "effective_from": "2026-01-01",
            },
        )
        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    async def test_invalid_rate_is_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/deductions",
            json={
                "code": "EPF",
                "name": "EPF",
                "employee_rate": "150",
                "employer_rate": "13",
                "effective_from": "2025-01-01",
            },
        )
        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert any("employee_rate" in error for error in data["errors"])

    async def test_list_active_for_nationality(self, client: AsyncClient, seeded):
        response = await client.get(
            "/api/v1/deductions", params={"as_of": "2025-11-01", "nationality": "local"}
        )
        assert response.status_code == 200
        assert [e["code"] for e in response.json()] == ["EPF", "SOCSO"]

        response = await client.get(
            "/api/v1/deductions",
            params={"as_of": "2025-11-01", "nationality": "foreigner_no_passport"},
        )
        assert response.json() == []

    async def test_supersede_and_history(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/deductions/EPF/supersede",
            json={"effective_from": "2026-01-01", "employee_rate": "9"},
        )
        assert response.status_code == 201
        assert Decimal(response.json()["employee_rate"]) == Decimal("9")

        history = (await client.get("/api/v1/deductions/EPF/history")).json()
        assert [e["effective_from"] for e in history] == ["2025-01-01", "2026-01-01"]
        assert history[0]["effective_until"] == "2025-12-31"

    async def test_close_entry(self, client: AsyncClient, seeded):
        response = await client.post(
            "/api/v1/deductions/SOCSO/close", json={"effective_until": "2025-12-31"}
        )
        assert response.status_code == 200
        assert response.json()["effective_until"] == "2025-12-31"
        assert len(response.json()["wage_ranges"]) == 3

    async def test_close_unknown_code(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/deductions/NOPE/close", json={"effective_until": "2025-12-31"}
        )
        assert response.status_code == 404


class TestWorkOrderEndpoints:
    """Test work order transition endpoints."""

    async def test_approve_processes_payroll(self, client: AsyncClient, seeded):
        """POST approve completes the order and writes the month's detail."""
        response = await client.post(
            f"/api/v1/work-orders/{seeded['pending']}/approve",
            headers=ACTOR,
            json={"remarks": "checked in the field"},
        )
        assert response.status_code == 200

        data = response.json()
        assert data["work_order"]["status"] == "completed"
        assert data["work_order"]["approved_by"] == "estate.manager"
        assert data["message"] == "Processed 1 worker(s) for 2025-11"

        history = (
            await client.get(f"/api/v1/work-orders/{seeded['pending']}/history")
        ).json()
        assert history[0]["action"] == "approve"
        assert history[0]["remarks"] == "checked in the field"

        aggregate = (await client.get("/api/v1/pay-aggregates/2025-11")).json()
        detail = aggregate["details"][0]
        assert detail["worker_id"] == seeded["worker"]
        assert [line["code"] for line in detail["breakdown"]] == ["EPF", "SOCSO"]
        assert detail["breakdown"][1]["wage_range"] == "RM 3,400.01 - RM 3,500.00"
        # 385.00 EPF + 17.25 SOCSO
        assert Decimal(detail["employee_deductions"]) == Decimal("402.25")
        assert Decimal(aggregate["total_net"]) == Decimal("3097.75")

    async def test_transition_requires_actor(self, client: AsyncClient, seeded):
        response = await client.post(f"/api/v1/work-orders/{seeded['pending']}/approve")
        assert response.status_code == 400

    async def test_invalid_transition_conflicts(self, client: AsyncClient, seeded):
        response = await client.post(
            f"/api/v1/work-orders/{seeded['ongoing']}/approve", headers=ACTOR
        )
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    async def test_submit_then_request_amendment(self, client: AsyncClient, seeded):
        response = await client.post(
            f"/api/v1/work-orders/{seeded['ongoing']}/submit", headers=ACTOR
        )
        assert response.json()["work_order"]["status"] == "pending"

        response = await client.post(
            f"/api/v1/work-orders/{seeded['ongoing']}/request-amendment", headers=ACTOR
        )
        assert response.json()["work_order"]["status"] == "amendment_required"

        response = await client.post(
            f"/api/v1/work-orders/{seeded['ongoing']}/reopen", headers=ACTOR
        )
        assert response.json()["work_order"]["status"] == "pending"

    async def test_unknown_work_order(self, client: AsyncClient):
        response = await client.post("/api/v1/work-orders/9999/submit", headers=ACTOR)
        assert response.status_code == 404


class TestPayAggregateEndpoints:
    async def test_missing_month(self, client: AsyncClient):
        response = await client.get("/api/v1/pay-aggregates/2025-10")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_malformed_month(self, client: AsyncClient):
        response = await client.get("/api/v1/pay-aggregates/2025-13")
        assert response.status_code == 422

    async def test_recalculate_month(self, client: AsyncClient, seeded):
        await client.post(f"/api/v1/work-orders/{seeded['pending']}/approve", headers=ACTOR)

        response = await client.post("/api/v1/pay-aggregates/2025-11/recalculate")
        assert response.status_code == 200
        assert response.json() == {
            "months": ["2025-11"],
            "details_updated": 1,
            "details_removed": 0,
        }

"""Unit tests for the parts ledger API.

Tests cover:
- Health, readiness and metrics endpoints
- Invoice lifecycle over HTTP
- Error bodies and status codes per error kind
- Receipts, adjustments, history, audit and stats
"""

from collections.abc import Iterator
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import prometheus_client
import pytest
from fastapi import status
from fastapi.testclient import TestClient

from parts_ledger.api import metrics
from parts_ledger.api.main import app, status_for_error
from parts_ledger.core.service import InventoryService
from parts_ledger.domain.schema import MovementType, Transaction
from parts_ledger.shared.errors import (
    ConfigurationError,
    LedgerDivergenceError,
    StoreRateLimitedError,
    StoreServerError,
)
from parts_ledger.store.base import Collection
from tests.conftest import FlakyListStore


@pytest.fixture
def client(service: InventoryService) -> Iterator[TestClient]:
    """Test client backed by an in-memory inventory service."""
    with patch("parts_ledger.api.main.inventory_service", service):
        yield TestClient(app)


def seed(client: TestClient, stock: dict[str, int]) -> str:
    """Create parts and a buyer; return the buyer id."""
    for part_id, on_hand in stock.items():
        response = client.post(
            "/api/v1/parts",
            json={
                "part_id": part_id,
                "description": f"Part {part_id}",
                "inventory_on_hand": on_hand,
                "unit_cost": "6.00",
                "unit_price": "10.00",
            },
        )
        assert response.status_code == status.HTTP_201_CREATED
    response = client.post("/api/v1/buyers", json={"buyer_name": "Acme Motors"})
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()["id"]


def test_health_check(client: TestClient) -> None:
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "service" in data


def test_readiness_check(client: TestClient) -> None:
    """Test readiness check endpoint."""
    response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["ready"] is True
    assert data["store"] == "memory"
    assert data["lists"]["Transactions"] is True


def test_readiness_check_store_down(client: TestClient, service: InventoryService) -> None:
    """Test readiness reports 503 when the store cannot be reached."""
    with patch.object(
        service.store,
        "health_check",
        AsyncMock(side_effect=StoreServerError("Graph unavailable", 503)),
    ):
        response = client.get("/ready")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    data = response.json()
    assert data["ready"] is False
    assert data["error"] == "Graph unavailable"


def test_metrics_endpoint(client: TestClient) -> None:
    """Test Prometheus metrics endpoint."""
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    # generate_latest renders the classic text format, not OpenMetrics
    assert response.headers["content-type"].startswith("text/plain")
    assert "http_requests_total" in response.text
    assert "ledger_movements_total" in response.text


def test_get_metrics_content_type_matches_body() -> None:
    body, content_type = metrics.get_metrics()

    assert content_type == prometheus_client.CONTENT_TYPE_LATEST
    assert b"# EOF" not in body


def test_invoice_flow(client: TestClient) -> None:
    """Create, finalize, pay an invoice and read its ledger rows."""
    buyer_id = seed(client, {"P1": 10, "P2": 10})

    response = client.post(
        "/api/v1/invoices", json={"buyer_id": buyer_id, "invoice_number": "INV-100"}
    )
    assert response.status_code == status.HTTP_201_CREATED
    invoice = response.json()
    assert invoice["status"] == "Draft"
    assert "etag" not in invoice

    response = client.post(
        f"/api/v1/invoices/{invoice['id']}/finalize",
        json={
            "line_items": [
                {"part_id": "P1", "quantity": 3},
                {"part_id": "P2", "quantity": 5, "unit_price": "9.50"},
            ]
        },
    )
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["invoice"]["status"] == "Finalized"
    assert Decimal(data["invoice"]["total_amount"]) == Decimal("77.50")
    assert [s["status"] for s in data["report"]["steps"]] == ["applied", "applied"]

    response = client.get(f"/api/v1/invoices/{invoice['id']}/line-items")
    assert [row["movement_type"] for row in response.json()] == ["Out (Sold)", "Out (Sold)"]

    assert client.get("/api/v1/parts/P1").json()["inventory_on_hand"] == 7

    response = client.post(f"/api/v1/invoices/{invoice['id']}/pay")
    assert response.json()["invoice"]["status"] == "Paid"

    response = client.get("/api/v1/invoices/by-number/INV-100")
    assert response.json()["status"] == "Paid"


def test_direct_finalize_and_void(client: TestClient) -> None:
    buyer_id = seed(client, {"P1": 10})

    response = client.post(
        "/api/v1/invoices/finalized",
        json={"invoice": {"buyer_id": buyer_id}, "line_items": [{"part_id": "P1", "quantity": 4}]},
    )
    assert response.status_code == status.HTTP_201_CREATED
    invoice_id = response.json()["invoice"]["id"]

    response = client.post(f"/api/v1/invoices/{invoice_id}/void")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["invoice"]["status"] == "Void"
    assert client.get("/api/v1/parts/P1").json()["inventory_on_hand"] == 10


def test_list_invoices_by_status(client: TestClient) -> None:
    buyer_id = seed(client, {"P1": 10})
    client.post("/api/v1/invoices", json={"buyer_id": buyer_id, "invoice_number": "D-1"})
    client.post(
        "/api/v1/invoices/finalized",
        json={
            "invoice": {"buyer_id": buyer_id, "invoice_number": "F-1"},
            "line_items": [{"part_id": "P1", "quantity": 1}],
        },
    )

    response = client.get("/api/v1/invoices", params={"status": "Finalized"})

    assert [i["invoice_number"] for i in response.json()] == ["F-1"]


def test_partial_finalize_returns_207(client: TestClient, store: FlakyListStore) -> None:
    """A failure after the first line item reports which rows were written."""
    buyer_id = seed(client, {"P1": 10, "P2": 10})
    invoice_id = client.post("/api/v1/invoices", json={"buyer_id": buyer_id}).json()["id"]
    store.fail_after(Collection.TRANSACTIONS, "create", successes=1)

    response = client.post(
        f"/api/v1/invoices/{invoice_id}/finalize",
        json={"line_items": [{"part_id": "P1", "quantity": 1}, {"part_id": "P2", "quantity": 1}]},
    )

    assert response.status_code == status.HTTP_207_MULTI_STATUS
    error = response.json()["error"]
    assert error["code"] == "PARTIAL_RECONCILIATION"
    assert [s["status"] for s in error["report"]["steps"]] == ["applied", "failed"]
    assert client.get(f"/api/v1/invoices/{invoice_id}").json()["status"] == "Draft"


def test_invalid_transition_returns_409(client: TestClient) -> None:
    buyer_id = seed(client, {"P1": 10})
    invoice_id = client.post("/api/v1/invoices", json={"buyer_id": buyer_id}).json()["id"]

    response = client.post(f"/api/v1/invoices/{invoice_id}/void")

    assert response.status_code == status.HTTP_409_CONFLICT
    error = response.json()["error"]
    assert error["code"] == "INVALID_TRANSITION"
    assert error["current_status"] == "Draft"
    assert error["requested_status"] == "Void"


def test_missing_invoice_returns_404(client: TestClient) -> None:
    response = client.get("/api/v1/invoices/999")

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["error"]["code"] == "INVOICE_NOT_FOUND"


def test_invalid_quantity_returns_400(client: TestClient) -> None:
    seed(client, {"P1": 10})

    response = client.post("/api/v1/parts/P1/receipts", json={"quantity": 0})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    error = response.json()["error"]
    assert error["code"] == "INVALID_QUANTITY"
    assert error["field"] == "quantity"


def test_receipt_and_adjustment(client: TestClient) -> None:
    seed(client, {"P1": 2})

    response = client.post(
        "/api/v1/parts/P1/receipts", json={"quantity": 8, "supplier": "Bosch"}
    )
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["previous_on_hand"] == 2
    assert data["new_on_hand"] == 10
    assert data["transaction"]["notes"] == "Received from Bosch"

    response = client.post(
        "/api/v1/parts/P1/adjustments", json={"quantity": 1, "reason": "Found in bay 3"}
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["new_on_hand"] == 11

    history = client.get("/api/v1/parts/P1/history").json()
    assert [row["movement_type"] for row in history] == ["Adjustment", "In (Received)"]

    audit = client.get("/api/v1/parts/P1/audit", params={"starting_inventory": 2}).json()
    assert audit["consistent"] is True
    assert audit["replayed_on_hand"] == 11


def test_patch_part_ignores_stock(client: TestClient) -> None:
    seed(client, {"P1": 5})

    response = client.patch(
        "/api/v1/parts/P1", json={"unit_price": "12.00", "inventory_on_hand": 99}
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["inventory_on_hand"] == 5
    assert Decimal(response.json()["unit_price"]) == Decimal("12.00")


def test_delete_buyer_with_invoices_returns_400(client: TestClient) -> None:
    buyer_id = seed(client, {})
    client.post("/api/v1/invoices", json={"buyer_id": buyer_id})

    response = client.delete(f"/api/v1/buyers/{buyer_id}")

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_delete_buyer(client: TestClient) -> None:
    buyer_id = seed(client, {})

    response = client.delete(f"/api/v1/buyers/{buyer_id}")

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert client.get(f"/api/v1/buyers/{buyer_id}").status_code == status.HTTP_404_NOT_FOUND


def test_stats_and_audit(client: TestClient) -> None:
    seed(client, {"P1": 3, "P2": 0, "P3": 20})

    stats = client.get("/api/v1/stats").json()
    assert stats["total_parts"] == 3
    assert stats["low_stock_parts"] == 1
    assert stats["out_of_stock_parts"] == 1

    report = client.get("/api/v1/audit").json()
    assert len(report["audits"]) == 3
    assert report["inconsistent"] == 0


def test_error_metric_recorded(client: TestClient) -> None:
    """Test that error responses increment the error counter by code."""
    counter = metrics.api_errors_total.labels(code="PART_NOT_FOUND")
    before = counter._value.get()

    client.get("/api/v1/parts/NOPE")

    assert counter._value.get() == before + 1


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ConfigurationError("Direct finalize flow is disabled"), 503),
        (StoreRateLimitedError("throttled", 429), 503),
        (StoreServerError("boom", 500), 502),
        (
            LedgerDivergenceError(
                Transaction(id="7", part_id="P1", movement_type=MovementType.SOLD, quantity=1),
                RuntimeError("patch failed"),
            ),
            502,
        ),
    ],
)
def test_status_for_error(error: Exception, expected: int) -> None:
    assert status_for_error(error) == expected  # type: ignore[arg-type]


def test_reconcile_part_after_lost_update(client: TestClient, store: FlakyListStore) -> None:
    seed(client, {"P1": 5})
    store.fail_after(Collection.PARTS, "update")

    response = client.post("/api/v1/parts/P1/receipts", json={"quantity": 3})
    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert client.get("/api/v1/parts/P1/audit").json()["consistent"] is False

    response = client.post("/api/v1/parts/P1/reconcile")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["discrepancy"] == -3
    assert client.get("/api/v1/parts/P1").json()["inventory_on_hand"] == 8
    assert client.get("/api/v1/parts/P1/audit").json()["consistent"] is True

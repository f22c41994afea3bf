"""Integration tests against a real SharePoint site over Microsoft Graph.

These tests require:
- APP_GRAPH_SITE_ID and APP_GRAPH_ACCESS_TOKEN environment variables set
- The Parts, Buyers, Invoices and Transactions lists provisioned on the site

Tests are skipped if the credentials are not available. They only read.
"""

import os

import pytest

from parts_ledger.core.service import create_inventory_service
from parts_ledger.shared.config import Settings

pytestmark = pytest.mark.skipif(
    not (os.getenv("APP_GRAPH_SITE_ID") and os.getenv("APP_GRAPH_ACCESS_TOKEN")),
    reason="APP_GRAPH_SITE_ID/APP_GRAPH_ACCESS_TOKEN not set - skipping integration tests",
)


@pytest.fixture
def settings() -> Settings:
    """Create settings for integration tests."""
    return Settings(store_provider="graph", cache_enabled=False)


@pytest.mark.asyncio
async def test_all_lists_reachable(settings: Settings) -> None:
    service = create_inventory_service(settings)
    try:
        health = await service.health_check()
    finally:
        await service.close()

    assert health["healthy"] is True
    assert set(health["lists"]) == {"Parts", "Buyers", "Invoices", "Transactions"}


@pytest.mark.asyncio
async def test_stored_stock_matches_ledger(settings: Settings) -> None:
    """Every part's stored stock agrees with a replay of its ledger rows."""
    service = create_inventory_service(settings)
    try:
        audits = await service.audit_inventory()
    finally:
        await service.close()

    inconsistent = [a.part_id for a in audits if not a.consistent]
    assert inconsistent == []

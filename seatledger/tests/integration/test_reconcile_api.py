from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from seatledger.apps.api.main import create_app
from seatledger.core.config import get_settings
from seatledger.persistence.repos import ledger as ledger_repo
from seatledger.tests.utils.auth import create_test_api_key
from seatledger.tests.utils.seed import (
    audit_entries,
    count_audit_entries,
    current_ledger,
    seed_organization,
    utc_now,
)


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


@pytest.mark.asyncio
async def test_missing_credential_is_unauthorized() -> None:
    async with _client() as client:
        response = await client.post("/v1/admin/reconcile", json={})
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    body = response.json()
    assert body["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert body["meta"]["api_version"] == "v1"


@pytest.mark.asyncio
async def test_unknown_or_malformed_credentials_are_unauthorized() -> None:
    async with _client() as client:
        unknown = await client.post(
            "/v1/admin/reconcile", json={}, headers={"Authorization": "Bearer slk_nope_nope"}
        )
        malformed = await client.post(
            "/v1/admin/reconcile", json={}, headers={"Authorization": "Token abc"}
        )
    assert unknown.status_code == 401
    assert malformed.status_code == 401


@pytest.mark.asyncio
async def test_revoked_and_expired_keys_are_unauthorized() -> None:
    _, revoked_headers, _, _ = await create_test_api_key(super_admin=True, key_revoked=True)
    _, expired_headers, _, _ = await create_test_api_key(
        super_admin=True, key_expires_at=utc_now() - timedelta(minutes=1)
    )
    async with _client() as client:
        revoked = await client.post("/v1/admin/reconcile", json={}, headers=revoked_headers)
        expired = await client.post("/v1/admin/reconcile", json={}, headers=expired_headers)
    assert revoked.status_code == 401
    assert expired.status_code == 401


@pytest.mark.asyncio
async def test_non_super_admin_is_forbidden_and_nothing_changes() -> None:
    org_id = await seed_organization(ledger_managers=3, ledger_workers=10, true_managers=2, true_workers=10)
    _, headers, _, _ = await create_test_api_key(email="member@example.com")

    async with _client() as client:
        response = await client.post("/v1/admin/reconcile", json={"reason": "try"}, headers=headers)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert (await current_ledger(org_id)).active_managers == 3
    assert await count_audit_entries() == 0


@pytest.mark.asyncio
async def test_super_admin_reconciles_and_gets_summary() -> None:
    org_id = await seed_organization(
        name="Org X", ledger_managers=3, ledger_workers=10, true_managers=2, true_workers=10
    )
    _, headers, _, _ = await create_test_api_key(email="root@example.com", super_admin=True)

    async with _client() as client:
        response = await client.post(
            "/v1/admin/reconcile",
            json={"reason": "after manual cleanup"},
            headers=headers,
        )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["success"] is True
    assert data["message"] == "Reconciled 1 organization(s)"
    assert data["reconciled"] == [
        {
            "org_id": org_id,
            "org_name": "Org X",
            "old_managers": 3,
            "new_managers": 2,
            "old_workers": 10,
            "new_workers": 10,
        }
    ]
    assert data["remaining_discrepancies"] == []
    assert data["failures"] == []

    entries = await audit_entries(org_id)
    assert len(entries) == 1
    assert entries[0].trigger_source == "manual_api"
    assert entries[0].metadata_json["triggered_by"] == "root@example.com"
    assert entries[0].metadata_json["reason"] == "after manual cleanup"


@pytest.mark.asyncio
async def test_clean_ledger_reports_no_discrepancies() -> None:
    await seed_organization(ledger_managers=1, ledger_workers=1, true_managers=1, true_workers=1)
    _, headers, _, _ = await create_test_api_key(super_admin=True)

    async with _client() as client:
        response = await client.post("/v1/admin/reconcile", headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["reconciled"] == []
    assert data["message"] == "No discrepancies found"


@pytest.mark.asyncio
async def test_single_organization_request_defaults_reason() -> None:
    target = await seed_organization(ledger_workers=0, true_workers=1)
    other = await seed_organization(ledger_workers=0, true_workers=2)
    _, headers, _, _ = await create_test_api_key(super_admin=True)

    async with _client() as client:
        response = await client.post(
            "/v1/admin/reconcile", json={"organization_id": target}, headers=headers
        )

    assert response.status_code == 200
    assert [item["org_id"] for item in response.json()["data"]["reconciled"]] == [target]
    assert (await current_ledger(other)).active_workers == 0
    entries = await audit_entries(target)
    assert entries[0].metadata_json["reason"] == "manual_reconciliation"


@pytest.mark.asyncio
async def test_orchestration_failure_returns_500(monkeypatch) -> None:
    await seed_organization(ledger_workers=0, true_workers=1)
    _, headers, _, _ = await create_test_api_key(super_admin=True)

    async def _fail(session, *, organization_id=None):
        raise OperationalError("SELECT organizations", {}, Exception("database unavailable"))

    monkeypatch.setattr(ledger_repo, "list_organizations", _fail)

    async with _client() as client:
        response = await client.post("/v1/admin/reconcile", json={}, headers=headers)

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "RECONCILIATION_FAILED"
    assert error["message"] == "Reconciliation failed"
    assert error["details"] == "Unable to enumerate organizations"


@pytest.mark.asyncio
async def test_discrepancy_scan_is_read_only() -> None:
    org_id = await seed_organization(ledger_managers=0, ledger_workers=4, true_managers=1, true_workers=4)
    _, headers, _, _ = await create_test_api_key(super_admin=True)

    async with _client() as client:
        response = await client.get("/v1/admin/reconcile/discrepancies", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"] == [
        {
            "org_id": org_id,
            "org_name": response.json()["data"][0]["org_name"],
            "stored_managers": 0,
            "true_managers": 1,
            "stored_workers": 4,
            "true_workers": 4,
        }
    ]
    assert (await current_ledger(org_id)).active_managers == 0


@pytest.mark.asyncio
async def test_usage_audit_listing_pages_newest_first() -> None:
    org_id = await seed_organization(ledger_managers=0, ledger_workers=0, true_managers=1, true_workers=1)
    _, headers, _, _ = await create_test_api_key(super_admin=True)

    async with _client() as client:
        await client.post("/v1/admin/reconcile", json={}, headers=headers)
        first_page = await client.get(
            f"/v1/admin/organizations/{org_id}/usage-audit", params={"limit": 1}, headers=headers
        )
        second_page = await client.get(
            f"/v1/admin/organizations/{org_id}/usage-audit",
            params={"limit": 1, "offset": 1},
            headers=headers,
        )

    assert first_page.status_code == 200
    first = first_page.json()["data"]
    second = second_page.json()["data"]
    assert first["next_offset"] == 1
    assert second["next_offset"] is None
    actions = {first["items"][0]["action"], second["items"][0]["action"]}
    assert actions == {"reconcile_managers", "reconcile_workers"}


@pytest.mark.asyncio
async def test_disabled_auth_without_dev_bypass_still_requires_a_key(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_ENABLED", "false")
    get_settings.cache_clear()
    org_id = await seed_organization(ledger_managers=3, true_managers=2)
    await create_test_api_key(email="boss@example.com", super_admin=True)

    async with _client() as client:
        response = await client.post(
            "/v1/admin/reconcile",
            json={},
            headers={"X-User-Email": "boss@example.com"},
        )

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Missing API key"
    assert (await current_ledger(org_id)).active_managers == 3
    assert await count_audit_entries() == 0


@pytest.mark.asyncio
async def test_dev_bypass_trusts_the_email_header_only_when_enabled(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.setenv("AUTH_DEV_BYPASS", "true")
    get_settings.cache_clear()
    org_id = await seed_organization(ledger_managers=3, true_managers=2)
    await create_test_api_key(email="boss@example.com", super_admin=True)

    async with _client() as client:
        admin = await client.post(
            "/v1/admin/reconcile",
            json={"organization_id": org_id},
            headers={"X-User-Email": "boss@example.com"},
        )
        member = await client.post(
            "/v1/admin/reconcile",
            json={"organization_id": org_id},
            headers={"X-User-Email": "member@example.com"},
        )

    assert admin.status_code == 200
    assert (await current_ledger(org_id)).active_managers == 2
    assert member.status_code == 403


@pytest.mark.asyncio
async def test_usage_audit_uses_configured_page_size(monkeypatch) -> None:
    monkeypatch.setenv("AUDIT_PAGE_SIZE", "1")
    get_settings.cache_clear()
    org_id = await seed_organization(ledger_managers=0, ledger_workers=0, true_managers=1, true_workers=1)
    _, headers, _, _ = await create_test_api_key(super_admin=True)

    async with _client() as client:
        await client.post("/v1/admin/reconcile", json={}, headers=headers)
        page = await client.get(f"/v1/admin/organizations/{org_id}/usage-audit", headers=headers)

    data = page.json()["data"]
    assert len(data["items"]) == 1
    assert data["next_offset"] == 1

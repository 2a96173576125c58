"""Admin API integration tests: trust moderation, ledger tools and sweeps."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from fiesta.core.timeutils import utcnow
from fiesta.db.session import get_sessionmaker
from fiesta.models import Match, MatchStatus, User

pytestmark = pytest.mark.asyncio


async def _authenticate(client: AsyncClient, email: str, password: str) -> dict[str, str]:
    response = await client.post(
        "/api/v1/auth/token",
        data={"username": email, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


async def test_admin_routes_require_admin(app_context) -> None:
    client: AsyncClient = app_context["client"]
    traveler = await _authenticate(
        client, app_context["traveler_email"], app_context["password"]
    )
    response = await client.get("/api/v1/admin/disputes", headers=traveler)
    assert response.status_code == 403

    anonymous = await client.get("/api/v1/admin/disputes")
    assert anonymous.status_code == 401


async def test_strikes_ban_and_unban(app_context) -> None:
    client: AsyncClient = app_context["client"]
    admin = await _authenticate(client, app_context["admin_email"], app_context["password"])
    traveler = await _authenticate(
        client, app_context["traveler_email"], app_context["password"]
    )
    user_id = app_context["traveler_id"]

    for expected in (1, 2, 3):
        response = await client.post(
            f"/api/v1/admin/users/{user_id}/strikes",
            json={"reason": "Repeated no-shows"},
            headers=admin,
        )
        assert response.status_code == 200, response.text
        assert response.json()["strikes"] == expected
    assert response.json()["banned_at"] is not None

    fourth = await client.post(
        f"/api/v1/admin/users/{user_id}/strikes",
        json={"reason": "Once more"},
        headers=admin,
    )
    assert fourth.status_code == 409
    assert fourth.json()["code"] == "trust_conflict"

    blocked = await client.post(
        "/api/v1/matches",
        json={"experience_id": str(app_context["exchange_experience_id"])},
        headers=traveler,
    )
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "user_banned"

    banned = await client.get("/api/v1/admin/users/banned", headers=admin)
    assert [item["id"] for item in banned.json()["items"]] == [str(user_id)]

    lifted = await client.delete(f"/api/v1/admin/users/{user_id}/ban", headers=admin)
    assert lifted.status_code == 200
    assert lifted.json()["strikes"] == 0
    assert lifted.json()["banned_at"] is None

    allowed = await client.post(
        "/api/v1/matches",
        json={"experience_id": str(app_context["exchange_experience_id"])},
        headers=traveler,
    )
    assert allowed.status_code == 201


async def test_direct_ban_and_strike_removal(app_context) -> None:
    client: AsyncClient = app_context["client"]
    admin = await _authenticate(client, app_context["admin_email"], app_context["password"])
    user_id = app_context["host_id"]

    await client.post(
        f"/api/v1/admin/users/{user_id}/strikes",
        json={"reason": "Misleading photos"},
        headers=admin,
    )
    removed = await client.delete(f"/api/v1/admin/users/{user_id}/strikes", headers=admin)
    assert removed.json()["strikes"] == 0

    banned = await client.post(
        f"/api/v1/admin/users/{user_id}/ban",
        json={"reason": "Fake listing"},
        headers=admin,
    )
    assert banned.status_code == 200
    assert banned.json()["ban_reason"] == "Fake listing"

    trail = await client.get(
        "/api/v1/admin/audit-events",
        params={"event_type": "trust.user_banned"},
        headers=admin,
    )
    assert trail.status_code == 200
    events = trail.json()
    assert len(events) == 1
    assert events[0]["user_id"] == str(app_context["admin_id"])


async def test_reconcile_freezes_and_release(app_context, db_url: str) -> None:
    client: AsyncClient = app_context["client"]
    admin = await _authenticate(client, app_context["admin_email"], app_context["password"])
    user_id = app_context["traveler_id"]

    clean = await client.post(f"/api/v1/admin/users/{user_id}/reconcile", headers=admin)
    assert clean.status_code == 200
    assert Decimal(clean.json()["balance"]) == Decimal("10.00")

    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        await session.execute(
            update(User).where(User.id == user_id).values(wallet_balance=Decimal("12.00"))
        )
        await session.commit()

    fault = await client.post(f"/api/v1/admin/users/{user_id}/reconcile", headers=admin)
    assert fault.status_code == 500
    assert fault.json()["code"] == "ledger_integrity_fault"
    assert fault.json()["ledger_balance"] == "10.00"

    traveler = await _authenticate(
        client, app_context["traveler_email"], app_context["password"]
    )
    wallet = await client.get("/api/v1/wallet", headers=traveler)
    assert wallet.json()["frozen"] is True

    still_off = await client.post(
        f"/api/v1/admin/users/{user_id}/release-freeze", headers=admin
    )
    assert still_off.status_code == 500

    async with sessionmaker() as session:
        await session.execute(
            update(User).where(User.id == user_id).values(wallet_balance=Decimal("10.00"))
        )
        await session.commit()

    released = await client.post(
        f"/api/v1/admin/users/{user_id}/release-freeze", headers=admin
    )
    assert released.status_code == 200
    assert released.json()["wallet_frozen_at"] is None

    history = await client.get(
        f"/api/v1/admin/users/{user_id}/transactions", headers=admin
    )
    assert history.json()["total"] == 1


async def test_expiry_sweep_and_match_listing(app_context, db_url: str) -> None:
    client: AsyncClient = app_context["client"]
    admin = await _authenticate(client, app_context["admin_email"], app_context["password"])
    traveler = await _authenticate(
        client, app_context["traveler_email"], app_context["password"]
    )
    create_resp = await client.post(
        "/api/v1/matches",
        json={"experience_id": str(app_context["paid_experience_id"])},
        headers=traveler,
    )
    match_id = create_resp.json()["id"]

    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        await session.execute(
            update(Match)
            .where(Match.status == MatchStatus.PENDING)
            .values(created_at=utcnow() - timedelta(days=3))
        )
        await session.commit()

    sweep = await client.post("/api/v1/admin/matches/expire", headers=admin)
    assert sweep.status_code == 200
    assert sweep.json() == {"expired": 1, "match_ids": [match_id]}

    listing = await client.get(
        "/api/v1/admin/matches", params={"status_filter": "rejected"}, headers=admin
    )
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["rejection_reason"] == "expired"


async def test_dispute_queue_review_and_stats(app_context) -> None:
    client: AsyncClient = app_context["client"]
    admin = await _authenticate(client, app_context["admin_email"], app_context["password"])
    traveler = await _authenticate(
        client, app_context["traveler_email"], app_context["password"]
    )
    host = await _authenticate(client, app_context["host_email"], app_context["password"])

    match_id = (
        await client.post(
            "/api/v1/matches",
            json={"experience_id": str(app_context["paid_experience_id"])},
            headers=traveler,
        )
    ).json()["id"]
    await client.post(f"/api/v1/matches/{match_id}/accept", headers=host)
    dispute_id = (
        await client.post(
            "/api/v1/disputes",
            json={
                "match_id": match_id,
                "reason": "SAFETY_CONCERN",
                "description": "The balcony railing is loose.",
            },
            headers=traveler,
        )
    ).json()["id"]

    queue = await client.get(
        "/api/v1/admin/disputes", params={"status_filter": "open"}, headers=admin
    )
    assert [item["id"] for item in queue.json()["items"]] == [dispute_id]

    review = await client.post(
        f"/api/v1/admin/disputes/{dispute_id}/review", headers=admin
    )
    assert review.json()["status"] == "under_review"

    resolve = await client.post(
        f"/api/v1/admin/disputes/{dispute_id}/resolve",
        json={
            "decision": {"kind": "RESOLVED_NO_REFUND"},
            "admin_action": "warning",
            "admin_notes": "Host fixed the railing",
        },
        headers=admin,
    )
    assert resolve.status_code == 200, resolve.text
    assert resolve.json()["refund_amount"] is None

    stats = await client.get("/api/v1/admin/disputes/stats", headers=admin)
    body = stats.json()
    assert body["total"] == 1
    assert body["by_status"]["resolved"] == 1
    assert body["by_reason"]["SAFETY_CONCERN"] == 1
    assert Decimal(body["total_refunded"]) == Decimal("0")

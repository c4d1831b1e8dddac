import httpx
import pytest
import pytest_asyncio

from loan_channel.database.models.user_model import Role
from loan_channel.services.loan_service import loan_application_service
from main import app

from tests.conftest import auth_headers


@pytest_asyncio.fixture
async def client(db):
    # ASGITransport skips the lifespan, the db fixture has already initialised Beanie
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def team(factory):
    admin = await factory.admin()
    asm = await factory.member(Role.ASM, admin)
    rm = await factory.member(Role.RM, asm)
    partner = await factory.member(Role.PARTNER, rm)
    return {"admin": admin, "asm": asm, "rm": rm, "partner": partner}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_requests_without_token_are_unauthorized(client):
    response = await client.get("/targets")

    assert response.status_code == 401
    assert response.json()["error"]["status_code"] == 401


@pytest.mark.asyncio
async def test_bulk_targets_route(client, team):
    response = await client.post(
        "/targets/bulk",
        json={"month": "June", "year": 2025, "total_target": 120000},
        headers=auth_headers(team["admin"]),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["count"] == 3
    assert {t["target_value"] for t in body["targets"]} == {120000.0}

    listed = await client.get("/targets", params={"month": "6", "year": "2025"}, headers=auth_headers(team["rm"]))
    assert listed.status_code == 200
    assert listed.json()["targets"][0]["assigned_to"] == str(team["rm"].id)


@pytest.mark.asyncio
async def test_bulk_targets_forbidden_for_rm(client, team):
    response = await client.post(
        "/targets/bulk",
        json={"month": 6, "year": 2025, "total_target": 1000},
        headers=auth_headers(team["rm"]),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_bulk_targets_invalid_month_is_a_validation_error(client, team):
    response = await client.post(
        "/targets/bulk",
        json={"month": "Smarch", "year": 2025, "total_target": 1000},
        headers=auth_headers(team["admin"]),
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_create_member_route(client, team, factory):
    payload = dict(factory.profile("rm"), role="RM")

    response = await client.post("/hierarchy/members", json=payload, headers=auth_headers(team["asm"]))

    assert response.status_code == 201
    member = response.json()["member"]
    assert member["role"] == "RM"
    assert member["asm_id"] == str(team["asm"].id)

    duplicate = await client.post("/hierarchy/members", json=payload, headers=auth_headers(team["asm"]))
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_application_routes(client, team, factory):
    partner_headers = auth_headers(team["partner"])
    rm_headers = auth_headers(team["rm"])

    created = await client.post(
        "/applications",
        json={"loan_type": "PERSONAL", "customer": factory.profile("customer"), "requested_amount": 200000},
        headers=partner_headers,
    )
    assert created.status_code == 201
    application_id = created.json()["application"]["id"]

    submitted = await client.post(f"/applications/{application_id}/submit", json={}, headers=partner_headers)
    assert submitted.status_code == 200
    assert submitted.json()["application"]["status"] == "SUBMITTED"

    invalid = await client.post(
        f"/applications/{application_id}/transition", json={"to_status": "FINISHED"}, headers=rm_headers
    )
    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "invalid_status"

    skipped = await client.post(
        f"/applications/{application_id}/transition", json={"to_status": "DISBURSED"}, headers=rm_headers
    )
    assert skipped.status_code == 400

    other_rm = await factory.member(Role.RM, team["asm"])
    foreign = await client.post(
        f"/applications/{application_id}/transition",
        json={"to_status": "UNDER_REVIEW"},
        headers=auth_headers(other_rm),
    )
    assert foreign.status_code == 404

    moved = await client.post(
        f"/applications/{application_id}/transition",
        json={"to_status": "UNDER_REVIEW", "note": "Checks started"},
        headers=rm_headers,
    )
    assert moved.status_code == 200
    assert moved.json()["event"]["to_status"] == "UNDER_REVIEW"

    eligibility = await client.get(f"/applications/{application_id}/payout-eligibility", headers=partner_headers)
    assert eligibility.json()["eligible"] is False

    inbox = await client.get("/notifications", headers=partner_headers)
    assert inbox.status_code == 200
    assert inbox.json()["count"] == 1


@pytest.mark.asyncio
async def test_document_routes(client, team):
    application = await loan_application_service.create_application(
        partner_id=team["partner"].id,
        loan_type="BUSINESS",
        customer_profile={
            "first_name": "Meera",
            "last_name": "Shah",
            "email": "meera@example.com",
            "phone": "9988776655",
        },
    )

    uploaded = await client.put(
        f"/applications/{application.id}/documents",
        json={"doc_type": "GST_CERTIFICATE", "url": "https://files.example.com/gst.pdf"},
        headers=auth_headers(team["partner"]),
    )
    assert uploaded.status_code == 200
    assert uploaded.json()["application"]["docs"][0]["status"] == "UPDATED"

    reviewed = await client.post(
        f"/applications/{application.id}/documents/review",
        json={"doc_type": "GST_CERTIFICATE", "status": "VERIFIED"},
        headers=auth_headers(team["rm"]),
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["application"]["docs"][0]["status"] == "VERIFIED"
    assert "GST_CERTIFICATE" not in reviewed.json()["unverified_documents"]
    assert "PAN" in reviewed.json()["unverified_documents"]


@pytest.mark.asyncio
async def test_team_target_routes(client, team, factory):
    second_partner = await factory.member(Role.PARTNER, team["rm"])

    split = await client.post(
        "/targets/team-bulk",
        json={"month": 6, "year": 2025, "total_target": 9000},
        headers=auth_headers(team["rm"]),
    )
    assert split.status_code == 201
    values = {t["assigned_to"]: t["target_value"] for t in split.json()["targets"]}
    assert values == {str(team["partner"].id): 4500.0, str(second_partner.id): 4500.0}

    assigned = await client.post(
        "/targets/assign",
        json={"user_id": str(team["rm"].id), "month": 6, "year": 2025, "target_value": 3000},
        headers=auth_headers(team["asm"]),
    )
    assert assigned.status_code == 201
    assert assigned.json()["count"] == 3

    foreign = await client.post(
        "/targets/team-bulk",
        json={"month": 6, "year": 2025, "total_target": 100, "parent_id": str(team["asm"].id)},
        headers=auth_headers(team["rm"]),
    )
    assert foreign.status_code == 404

    forbidden = await client.post(
        "/targets/team-bulk",
        json={"month": 6, "year": 2025, "total_target": 100},
        headers=auth_headers(team["partner"]),
    )
    assert forbidden.status_code == 403

import pytest


async def _create_catalog(client, admin_headers):
    ids = {}
    for key, name, points in (
        ("logo", "Typography Scale + Wordmark Logo", 5),
        ("guide", "Brand Style Guide", 8),
    ):
        response = await client.post(
            "/api/v1/deliverables",
            json={"name": name, "category": "Branding", "base_points": points},
            headers=admin_headers,
        )
        assert response.status_code == 201
        ids[key] = response.json()["id"]
    return ids


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_catalog_writes_require_admin(client, member_headers):
    payload = {"name": "Logo", "base_points": 5}

    assert (await client.post("/api/v1/deliverables", json=payload)).status_code == 403
    assert (await client.post("/api/v1/deliverables", json=payload, headers=member_headers)).status_code == 403

    bad_token = {"Authorization": "Bearer not-a-jwt"}
    assert (await client.post("/api/v1/deliverables", json=payload, headers=bad_token)).status_code == 401


@pytest.mark.asyncio
async def test_negative_base_points_rejected(client, admin_headers):
    response = await client.post(
        "/api/v1/deliverables", json={"name": "Broken", "base_points": -2}, headers=admin_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_sprint_replace_and_totals(client, admin_headers):
    ids = await _create_catalog(client, admin_headers)

    created = await client.post("/api/v1/sprints", json={"title": "Brand sprint"})
    assert created.status_code == 201
    sprint_id = created.json()["sprint"]["id"]

    response = await client.put(
        f"/api/v1/sprints/{sprint_id}/deliverables",
        json={"deliverables": [
            {"deliverable_id": ids["logo"], "quantity": 2, "complexity_multiplier": 1.0},
            {"deliverable_id": ids["guide"], "quantity": 1, "complexity_multiplier": 1.5},
        ]},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["totals"] == {
        "deliverable_count": 2,
        "total_points": 22.0,
        "total_hours": 220.0,
        "total_price": 38500,
    }
    assert len(body["sprint"]["line_items"]) == 2

    totals = await client.get(f"/api/v1/sprints/{sprint_id}/totals")
    assert totals.json() == body["totals"]

    detail = await client.get(f"/api/v1/sprints/{sprint_id}")
    assert detail.json()["total_fixed_price"] == 38500


@pytest.mark.asyncio
async def test_strict_replace_over_http(client, admin_headers):
    ids = await _create_catalog(client, admin_headers)
    sprint_id = (await client.post("/api/v1/sprints", json={"title": "Strict"})).json()["sprint"]["id"]

    response = await client.put(
        f"/api/v1/sprints/{sprint_id}/deliverables",
        json={"deliverables": [{"deliverable_id": ids["logo"]}, {"deliverable_id": 9999}]},
    )

    assert response.status_code == 422
    assert response.json()["errors"] == ["Deliverable 9999 does not exist"]
    assert (await client.get(f"/api/v1/sprints/{sprint_id}/totals")).json()["deliverable_count"] == 0


@pytest.mark.asyncio
async def test_unknown_sprint_is_404(client):
    assert (await client.get("/api/v1/sprints/404")).status_code == 404
    response = await client.put("/api/v1/sprints/404/deliverables", json={"deliverables": []})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_status_transitions_over_http(client):
    sprint_id = (await client.post("/api/v1/sprints", json={"title": "Status"})).json()["sprint"]["id"]

    ok = await client.patch(f"/api/v1/sprints/{sprint_id}/status", json={"status": "negotiating"})
    assert ok.status_code == 200
    assert ok.json()["status"] == "negotiating"

    bad = await client.patch(f"/api/v1/sprints/{sprint_id}/status", json={"status": "complete"})
    assert bad.status_code == 422
    assert bad.json()["type"] == "InvalidStatusTransitionError"


@pytest.mark.asyncio
async def test_contract_update_is_admin_only(client, admin_headers, member_headers):
    sprint_id = (await client.post("/api/v1/sprints", json={"title": "Contract"})).json()["sprint"]["id"]
    payload = {"contract_url": "https://docs.example.com/c", "contract_status": "signed"}

    denied = await client.patch(f"/api/v1/sprints/{sprint_id}/contract", json=payload, headers=member_headers)
    assert denied.status_code == 403

    allowed = await client.patch(f"/api/v1/sprints/{sprint_id}/contract", json=payload, headers=admin_headers)
    assert allowed.status_code == 200
    assert allowed.json()["contract_status"] == "signed"
    assert allowed.json()["contract_url"] == "https://docs.example.com/c"


@pytest.mark.asyncio
async def test_ingest_endpoint(client, admin_headers):
    ids = await _create_catalog(client, admin_headers)

    response = await client.post("/api/v1/sprints/ingest", json={
        "title": "Drafted",
        "deliverables": [
            {"deliverable_id": ids["logo"], "quantity": 2},
            {"deliverable_name": "Brand Style Guide", "complexity_multiplier": 1.5},
            {"deliverable_name": "Does Not Exist"},
        ],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["totals"]["total_price"] == 38500
    assert len(body["warnings"]) == 1


@pytest.mark.asyncio
async def test_package_seed_and_totals(client, admin_headers):
    await _create_catalog(client, admin_headers)
    payload = {"packages": [{
        "name": "Brand Identity Sprint",
        "slug": "brand-identity-sprint",
        "featured": True,
        "deliverables": [
            {"deliverable_name": "Typography Scale + Wordmark Logo"},
            {"deliverable_name": "Brand Style Guide"},
        ],
    }]}

    assert (await client.post("/api/v1/packages/seed", json=payload)).status_code == 403

    first = await client.post("/api/v1/packages/seed", json=payload, headers=admin_headers)
    second = await client.post("/api/v1/packages/seed", json=payload, headers=admin_headers)
    assert first.json()["created"] == 1
    assert second.json()["created"] == 0

    listed = await client.get("/api/v1/packages")
    assert [p["slug"] for p in listed.json()] == ["brand-identity-sprint"]

    detail = await client.get("/api/v1/packages/brand-identity-sprint")
    assert detail.status_code == 200
    assert detail.json()["totals"]["total_points"] == 13.0

    package_id = detail.json()["package"]["id"]
    totals = await client.get(f"/api/v1/packages/{package_id}/totals")
    assert totals.json()["total_price"] == 22750

    all_totals = await client.get("/api/v1/packages/totals")
    assert all_totals.json()[0]["totals"]["deliverable_count"] == 2


@pytest.mark.asyncio
async def test_package_rejects_estimate_override_over_http(client, admin_headers):
    ids = await _create_catalog(client, admin_headers)
    created = await client.post("/api/v1/packages", json={"name": "Logo Only"}, headers=admin_headers)
    package_id = created.json()["package"]["id"]

    response = await client.put(
        f"/api/v1/packages/{package_id}/deliverables",
        json={"deliverables": [{"deliverable_id": ids["logo"], "custom_estimate_points": 1}]},
        headers=admin_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_package_slug_is_409(client, admin_headers):
    await client.post("/api/v1/packages", json={"name": "MVP Launch Sprint"}, headers=admin_headers)
    response = await client.post("/api/v1/packages", json={"name": "MVP Launch Sprint"}, headers=admin_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_out_of_range_deliverable_id_is_422(client, admin_headers):
    sprint_id = (await client.post("/api/v1/sprints", json={"title": "Huge"})).json()["sprint"]["id"]

    response = await client.put(
        f"/api/v1/sprints/{sprint_id}/deliverables",
        json={"deliverables": [{"deliverable_id": 2**63}]},
    )

    assert response.status_code == 422
    assert response.json()["errors"] == [f"Deliverable {2**63} does not exist"]


@pytest.mark.asyncio
async def test_non_ascii_digit_package_lookup_is_404(client):
    assert (await client.get("/api/v1/packages/%C2%B2")).status_code == 404
    assert (await client.get("/api/v1/packages/2024")).status_code == 404

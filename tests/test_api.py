"""
End-to-end tests of the HTTP surface through FastAPI's TestClient.
"""
from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from cellar.app import create_app
from cellar.core.security import cookie_token

from conftest import read_local, write_local

WINE = {"bottle": "Sancerre", "country": "France", "vintage": 2022, "style": "White", "location": "Rack B"}


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def remote_client(remote_settings, github):
    with TestClient(create_app(remote_settings, transport=github.transport)) as c:
        yield c


def test_health_reports_backend(client):
    assert client.get("/health").json() == {"ok": True, "backend": "local"}


def test_crud_flow_on_local_backend(client, data_dir):
    created = client.post("/api/wines", json={**WINE, "dataSource": "2"})
    assert created.status_code == 201
    wine = created.json()
    assert wine["status"] == "in_cellar"

    listed = client.get("/api/wines", params={"dataSource": "2"})
    assert listed.status_code == 200
    assert listed.headers["X-Data-Backend"] == "local"
    assert [w["id"] for w in listed.json()] == [wine["id"]]
    assert client.get("/api/wines").json() == []

    got = client.get(f"/api/wines/{wine['id']}", params={"dataSource": "2"})
    assert got.json()["bottle"] == "Sancerre"

    updated = client.put(f"/api/wines/{wine['id']}", json={"dataSource": "2", "quantity": 3})
    assert updated.status_code == 200
    assert updated.json()["quantity"] == 3

    deleted = client.delete(f"/api/wines/{wine['id']}", params={"dataSource": "2"})
    assert deleted.json() == {"message": "Wine deleted successfully"}
    assert read_local(data_dir, "wines2.json") == []

    again = client.delete(f"/api/wines/{wine['id']}", params={"dataSource": "2"})
    assert again.status_code == 404
    assert again.json() == {"error": "Wine not found"}


def test_list_filters(client, data_dir):
    write_local(
        data_dir,
        "wines.json",
        [
            {"id": "1", "bottle": "Sancerre", "country": "France", "vintage": 2022, "style": "White", "status": "in_cellar"},
            {"id": "2", "bottle": "Brunello", "country": "Italy", "vintage": 2015, "style": "Red", "status": "consumed"},
        ],
    )
    assert [w["id"] for w in client.get("/api/wines", params={"country": "Italy"}).json()] == ["2"]
    assert [w["id"] for w in client.get("/api/wines", params={"status": "all", "vintage": "2022"}).json()] == ["1"]
    assert [w["id"] for w in client.get("/api/wines", params={"search": "brun"}).json()] == ["2"]


def test_create_validation_error(client):
    resp = client.post("/api/wines", json={"bottle": "Incomplete"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Invalid wine payload"
    assert any(err["field"] == "country" for err in body["details"])


def test_invalid_json_body(client):
    resp = client.post("/api/wines", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400


def test_malformed_dataset_is_a_generic_500(client, data_dir):
    (data_dir / "wines.json").write_text("{broken", encoding="utf-8")
    resp = client.get("/api/wines")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to fetch wines"}


def test_remote_version_header_and_if_match_conflict(remote_client, github):
    github.put_json("data/wines.json", [{"id": "1", **WINE}])
    listed = remote_client.get("/api/wines")
    token = listed.headers["X-Data-Version"]
    assert listed.headers["X-Data-Backend"] == "remote"

    ok = remote_client.put("/api/wines/1", json={"notes": "for Sunday"}, headers={"If-Match": f'"{token}"'})
    assert ok.status_code == 200

    stale = remote_client.delete("/api/wines/1", headers={"If-Match": token})
    assert stale.status_code == 409
    assert stale.headers["X-Data-Version"] == github.sha_of("data/wines.json")
    assert len(github.get_json("data/wines.json")) == 1


def test_remote_degraded_read_blocks_writes(remote_client, github, data_dir):
    write_local(data_dir, "wines.json", [])
    github.fail_reads = True
    assert remote_client.get("/api/wines").status_code == 200
    resp = remote_client.post("/api/wines", json=WINE)
    assert resp.status_code == 503
    assert read_local(data_dir, "wines.json") == []


# ------------------------------------------------------------------- PIN gate
@pytest.fixture
def gated_client(settings):
    with TestClient(create_app(replace(settings, site_pins=("4321",)))) as c:
        yield c


def test_gate_blocks_api_without_cookie(gated_client):
    resp = gated_client.get("/api/wines")
    assert resp.status_code == 401


def test_gate_redirects_pages_to_pin(gated_client):
    resp = gated_client.get("/cellar?dataSource=2", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/pin?redirect=%2Fcellar%3FdataSource%3D2"


def test_pin_page_is_public(gated_client):
    resp = gated_client.get("/pin")
    assert resp.status_code == 200
    assert "Enter PIN" in resp.text


def test_pin_json_login_sets_cookie(gated_client):
    bad = gated_client.post("/api/pin", json={"pin": "0000"})
    assert bad.status_code == 401
    good = gated_client.post("/api/pin", json={"pin": "4321"})
    assert good.json() == {"ok": True}
    assert gated_client.cookies.get("pin_auth") == cookie_token("4321", "test-salt")
    assert gated_client.get("/api/wines").status_code == 200


def test_pin_form_login_redirects_back(gated_client):
    resp = gated_client.post("/pin", data={"pin": "4321", "redirect": "/cellar"}, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/cellar"
    assert "pin_auth=" in resp.headers["set-cookie"]


def test_pin_endpoint_without_configured_pin(client):
    assert client.post("/api/pin", json={"pin": "1"}).status_code == 500


def test_pin_attempts_are_rate_limited(gated_client):
    codes = [gated_client.post("/api/pin", json={"pin": "0000"}).status_code for _ in range(11)]
    assert codes[:10] == [401] * 10
    assert codes[10] == 429


def test_pin_body_must_be_an_object(gated_client):
    assert gated_client.post("/api/pin", json=[1]).status_code == 400
    assert gated_client.post("/api/pin", json={"code": "4321"}).status_code == 400


def test_first_wine_creates_remote_dataset(remote_client, github, data_dir):
    resp = remote_client.post("/api/wines", json={**WINE, "dataSource": "2"})
    assert resp.status_code == 201
    assert github.get_json("data/wines2.json") == [resp.json()]
    assert not (data_dir / "wines2.json").exists()


# ------------------------------------------------------------------ AI helpers
@pytest.fixture
def ai_client(ai_settings, openai_fake):
    with TestClient(create_app(ai_settings, ai_transport=openai_fake.transport)) as c:
        yield c


def test_ai_endpoints_without_key(client):
    resp = client.post("/api/ai/extract-wine", json={"image": "https://img.example/a.jpg"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Missing OPENAI_API_KEY"}


def test_extract_wine_endpoint(ai_client, openai_fake):
    openai_fake.replies.append({"bottle": "Sancerre", "country": "France", "vintage": 2022, "style": "white"})
    resp = ai_client.post("/api/ai/extract-wine", json={"image": "data:image/jpeg;base64,AAAA"})
    assert resp.status_code == 200
    assert resp.json()["style"] == "White"
    assert ai_client.post("/api/ai/extract-wine", json={}).status_code == 400


def test_enrich_pairing_saves_into_wine(ai_client, openai_fake, data_dir):
    write_local(data_dir, "wines2.json", [{"id": "7", **WINE}])
    openai_fake.replies.append({"foodPairingNotes": "Goat cheese", "mealToHaveWithThisWine": "Crottin salad"})
    resp = ai_client.post("/api/ai/enrich-pairing", json={"wineId": "7", "dataSource": "2"})
    assert resp.status_code == 200
    assert read_local(data_dir, "wines2.json")[0]["mealToHaveWithThisWine"] == "Crottin salad"

    missing = ai_client.post("/api/ai/enrich-pairing", json={"wineId": "8", "dataSource": "2"})
    assert missing.status_code == 404


def test_enrich_pairing_for_unsaved_wine(ai_client, openai_fake):
    openai_fake.replies.append({"foodPairingNotes": "Oysters", "mealToHaveWithThisWine": "Moules"})
    resp = ai_client.post("/api/ai/enrich-pairing", json={"wine": WINE, "mode": "pairing"})
    assert resp.json() == {"foodPairingNotes": "Oysters", "mealToHaveWithThisWine": "Moules"}


def test_sommelier_uses_stored_cellar(ai_client, openai_fake, data_dir):
    write_local(data_dir, "wines.json", [{"id": "1", **WINE}])
    openai_fake.replies.append({"type": "question", "question": "What are you eating?"})
    resp = ai_client.post("/api/ai/sommelier", json={"messages": [{"role": "user", "content": "Something nice"}]})
    assert resp.status_code == 200
    assert resp.json() == {"type": "question", "question": "What are you eating?", "language": "en"}
    assert "Sancerre" in openai_fake.sent()["messages"][1]["content"]


def test_sommelier_upstream_failure(ai_client, openai_fake):
    openai_fake.replies.append(400)
    resp = ai_client.post(
        "/api/ai/sommelier",
        json={"wines": [{"id": "1", **WINE}], "messages": [{"role": "user", "content": "Hi"}]},
    )
    assert resp.status_code == 502
    assert resp.json()["error"] == "OpenAI request failed"

"""Tests for the FastAPI web API."""

from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from cardscan.api import create_app
from cardscan.config import settings
from cardscan.models import NON_CATEGORIZED_EVENT_ID
from cardscan.services.container import build_services

from tests.conftest import completion_response, make_llm


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def _create_contact(client, **fields) -> dict:
    response = client.post("/contacts", json=fields)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"
        assert data["storage_backend"] == "sql"
        assert data["llm_configured"] is True


class TestApiKey:
    def test_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cardscan_api_key", "k-123")
        assert client.get("/contacts").status_code == 401
        assert client.get("/contacts", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.get("/contacts", headers={"Authorization": "Bearer k-123"}).status_code == 200
        # Health stays open
        assert client.get("/health").status_code == 200


class TestContactsEndpoints:
    def test_create_enriches_and_persists(self, client, memory_store):
        data = _create_contact(client, name=" Jane Doe ", company="Acme Corp", officePhone="555-0101")

        assert data["name"] == "Jane Doe"
        assert data["officePhone"] == "555-0101"
        assert data["linkedinUrl"].endswith("Jane%20Doe%20Acme%20Corp")
        assert data["profilePhotoUrl"] is None
        assert data["categoryIds"] == []
        assert memory_store.data["business_cards"]

    def test_create_requires_name_or_company(self, client):
        response = client.post("/contacts", json={"email": "x@y.com"})
        assert response.status_code == 422
        assert response.json()["detail"] == "Please add at least a name or company."

    def test_get_update_delete(self, client):
        created = _create_contact(client, name="Jane", email="jane@acme.example")
        contact_id = created["id"]

        assert client.get(f"/contacts/{contact_id}").json()["email"] == "jane@acme.example"

        response = client.patch(f"/contacts/{contact_id}", json={"cellPhone": "555-0102"})
        assert response.status_code == 200
        updated = response.json()
        assert updated["cellPhone"] == "555-0102"
        assert updated["email"] == "jane@acme.example"
        assert updated["createdAt"] == created["createdAt"]

        assert client.delete(f"/contacts/{contact_id}").json() == {"deleted": True}
        assert client.get(f"/contacts/{contact_id}").status_code == 404

    def test_patch_rejects_unknown_and_immutable_fields(self, client):
        contact_id = _create_contact(client, name="Jane")["id"]
        assert client.patch(f"/contacts/{contact_id}", json={"id": "other"}).status_code == 422
        assert client.patch(f"/contacts/{contact_id}", json={"favouriteColour": "red"}).status_code == 422

    def test_unknown_contact(self, client):
        assert client.get("/contacts/missing").status_code == 404
        assert client.patch("/contacts/missing", json={"name": "x"}).status_code == 404
        assert client.delete("/contacts/missing").status_code == 404

    def test_contact_event_and_categories(self, client):
        contact_id = _create_contact(client, name="Jane", categoryIds=["hot", "gone"], eventId="stale")["id"]

        assert client.get(f"/contacts/{contact_id}/event").json()["id"] == NON_CATEGORIZED_EVENT_ID
        categories = client.get(f"/contacts/{contact_id}/categories").json()
        assert [c["id"] for c in categories] == ["hot"]

    def test_clear_all(self, client):
        _create_contact(client, name="Jane")
        assert client.delete("/contacts").json() == {"cleared": True}
        assert client.get("/contacts").json() == []


class TestEventsEndpoints:
    def test_sentinel_present(self, client):
        events = client.get("/events").json()
        assert [e["id"] for e in events] == [NON_CATEGORIZED_EVENT_ID]

    def test_create_and_list_contacts(self, client):
        event = client.post("/events", json={"name": "Expo"}).json()
        _create_contact(client, name="Jane", eventId=event["id"])
        _create_contact(client, name="Sam")

        in_event = client.get(f"/events/{event['id']}/contacts").json()
        uncategorized = client.get(f"/events/{NON_CATEGORIZED_EVENT_ID}/contacts").json()

        assert [c["name"] for c in in_event] == ["Jane"]
        assert [c["name"] for c in uncategorized] == ["Sam"]

    def test_cannot_delete_sentinel(self, client):
        response = client.delete(f"/events/{NON_CATEGORIZED_EVENT_ID}")
        assert response.status_code == 409

    def test_delete_and_resolve(self, client):
        event = client.post("/events", json={"name": "Expo"}).json()
        assert client.delete(f"/events/{event['id']}").status_code == 200
        assert client.get(f"/events/{event['id']}").json()["id"] == NON_CATEGORIZED_EVENT_ID
        assert client.delete(f"/events/{event['id']}").status_code == 404

    def test_update(self, client):
        event = client.post("/events", json={"name": "Expo"}).json()
        response = client.patch(f"/events/{event['id']}", json={"description": "Hall B"})
        assert response.json()["description"] == "Hall B"
        assert client.patch(f"/events/{event['id']}", json={"name": " "}).status_code == 422
        assert client.patch("/events/missing", json={"description": "x"}).status_code == 404

    def test_blank_name_rejected(self, client):
        assert client.post("/events", json={"name": ""}).status_code == 422


class TestCategoriesEndpoints:
    def test_crud(self, client):
        assert len(client.get("/categories").json()) == 5

        created = client.post("/categories", json={"title": "VIP", "color": "#000000"}).json()
        assert created["description"] == ""

        updated = client.patch(f"/categories/{created['id']}", json={"title": "Very Important"}).json()
        assert updated["title"] == "Very Important"

        assert client.delete(f"/categories/{created['id']}").status_code == 200
        assert client.delete(f"/categories/{created['id']}").status_code == 404


class TestExportEndpoints:
    def test_csv_with_event_filter(self, client):
        expo = client.post("/events", json={"name": "Expo"}).json()
        summit = client.post("/events", json={"name": "Summit"}).json()
        _create_contact(client, name="Ann", eventId=summit["id"])
        _create_contact(client, name="Bob", eventId=expo["id"])
        _create_contact(client, name="Cy")

        response = client.get("/export/csv", params=[("event_id", expo["id"]), ("event_id", summit["id"])])

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "business-cards-" in response.headers["content-disposition"]
        rows = response.text.split("\n")
        assert rows[0].startswith("Name,Title,Company")
        assert [r.split(",")[0] for r in rows[1:]] == ['"Ann"', '"Bob"']

    def test_json_all(self, client):
        _create_contact(client, name="Ann")
        records = json.loads(client.get("/export/json").text)
        assert records[0]["name"] == "Ann"
        assert records[0]["event"] == "Non-Categorized"

    def test_sheets_with_nothing_to_export(self, client):
        response = client.post("/export/sheets", json={"eventIds": []})
        assert response.status_code == 422

    def test_sheets_not_configured(self, client):
        _create_contact(client, name="Ann")
        response = client.post("/export/sheets", json={})
        assert response.json() == {"sent": False, "rows": 1}


class TestScanEndpoint:
    def test_scan_returns_draft_and_suggested_event(self, memory_store):
        llm = make_llm(lambda request: completion_response({"name": "Jane Doe", "company": "Acme"}))
        services = build_services(store=memory_store, llm=llm)
        with TestClient(create_app(services)) as client:
            event = client.post("/events", json={"name": "Expo"}).json()
            response = client.post("/scan", json={"imageBase64": "QUJD"})

        assert response.status_code == 200
        data = response.json()
        assert data["draft"]["name"] == "Jane Doe"
        assert data["suggestedEventId"] == event["id"]
        # Nothing stored by a scan
        assert "business_cards" not in memory_store.data

    def test_scan_failure(self, client):
        response = client.post("/scan", json={"imageBase64": "QUJD"})
        assert response.status_code == 422


class TestAuthEndpoints:
    def test_register_login_me_logout(self, client):
        registered = client.post("/auth/register", json={
            "firstName": "Jane", "lastName": "Doe", "email": "jane@acme.example", "password": "hunter22",
        })
        assert registered.status_code == 200
        assert registered.json()["user"]["firstName"] == "Jane"

        duplicate = client.post("/auth/register", json={
            "firstName": "J", "lastName": "D", "email": "JANE@acme.example", "password": "hunter22",
        })
        assert duplicate.status_code == 409

        assert client.post("/auth/login", json={"email": "jane@acme.example", "password": "bad"}).status_code == 401
        token = client.post("/auth/login", json={"email": "jane@acme.example", "password": "hunter22"}).json()["token"]

        headers = {"Authorization": f"Bearer {token}"}
        assert client.get("/auth/me", headers=headers).json()["user"]["email"] == "jane@acme.example"
        assert client.post("/auth/logout", headers=headers).json() == {"success": True}
        assert client.get("/auth/me", headers=headers).json()["user"] is None

    def test_users_listing(self, client):
        client.post("/auth/register", json={
            "firstName": "Jane", "lastName": "Doe", "email": "jane@acme.example", "password": "hunter22",
        })
        data = client.get("/auth/users").json()
        assert data["total"] == 1
        assert "password" not in data["users"][0]

"""
Tests for the FastAPI server endpoints.
"""

import json
import pytest
from fastapi.testclient import TestClient

from catalog_storage import DocumentTypeCatalog, set_catalog
from server import app


@pytest.fixture
def catalog(tmp_path):
    catalog = DocumentTypeCatalog(str(tmp_path / "document_types.json"))
    set_catalog(catalog)
    yield catalog
    set_catalog(None)


@pytest.fixture
def client(catalog):
    return TestClient(app)


@pytest.fixture
def seeded(client):
    client.post("/api/seed-document-types")
    return client


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# ============================================================================
# Catalog Endpoint Tests
# ============================================================================

class TestDocumentTypeEndpoints:
    """Tests for catalog management endpoints."""

    def test_create_and_get(self, client):
        response = client.post("/api/document-types", json={
            "code": "nr35", "name": "NR-35 - Trabalho em Altura", "default_validity_years": 2,
        })
        assert response.status_code == 201
        created = response.json()
        assert created["code"] == "NR35"

        fetched = client.get(f"/api/document-types/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["default_validity_years"] == 2

    def test_create_duplicate(self, client):
        client.post("/api/document-types", json={"code": "ASO"})
        response = client.post("/api/document-types", json={"code": "aso"})
        assert response.status_code == 409

    def test_create_invalid(self, client):
        response = client.post("/api/document-types", json={"code": "NR35", "default_validity_years": -2})
        assert response.status_code == 400

    def test_get_missing(self, client):
        assert client.get("/api/document-types/nope").status_code == 404

    def test_update(self, client):
        created = client.post("/api/document-types", json={"code": "NR35", "default_validity_years": 2}).json()
        response = client.put(f"/api/document-types/{created['id']}", json={"default_validity_years": 1})
        assert response.status_code == 200
        assert response.json()["default_validity_years"] == 1
        assert response.json()["code"] == "NR35"

    def test_update_missing(self, client):
        assert client.put("/api/document-types/nope", json={"name": "x"}).status_code == 404

    def test_update_clash(self, client):
        client.post("/api/document-types", json={"code": "NR35"})
        other = client.post("/api/document-types", json={"code": "NR10"}).json()
        response = client.put(f"/api/document-types/{other['id']}", json={"code": "NR35"})
        assert response.status_code == 409

    def test_delete(self, client):
        created = client.post("/api/document-types", json={"code": "NR35"}).json()
        assert client.delete(f"/api/document-types/{created['id']}").status_code == 200
        assert client.delete(f"/api/document-types/{created['id']}").status_code == 404

    def test_seed_and_list(self, client):
        response = client.post("/api/seed-document-types", json={})
        assert response.status_code == 200
        assert len(response.json()["created"]) > 0

        codes = [t["code"] for t in client.get("/api/document-types").json()]
        assert "NR35" in codes and "ASO" in codes and "RG" in codes


# ============================================================================
# Engine Endpoint Tests
# ============================================================================

class TestParseScanEndpoint:
    """Tests for /api/parse-scan."""

    def test_parse(self, client):
        content = "```json\n" + json.dumps({"success": True, "document_type_code": "ASO"}) + "\n```"
        response = client.post("/api/parse-scan", json={"responses": [
            {"fileName": "aso.pdf", "content": content},
            {"fileName": "b.pdf", "status_code": 429},
        ]})
        assert response.status_code == 200
        results = response.json()["results"]
        assert results[0]["success"] is True
        assert results[0]["signatures"]["count"] == 0
        assert results[1]["error"] == "Limite de requisições excedido. Aguarde alguns segundos."


class TestResolveEndpoint:
    """Tests for /api/resolve."""

    def test_resolve_against_stored_catalog(self, seeded):
        response = seeded.post("/api/resolve", json={
            "employee_id": "emp-1",
            "today": "2025-06-01",
            "results": [
                {"fileName": "nr35.pdf", "success": True, "document_type_code": "NR35",
                 "emission_date": "2024-03-15"},
                {"fileName": "bad.pdf", "success": False, "error": "Resposta vazia da IA"},
                {"fileName": "rg.jpg", "success": True, "document_type_code": "RG"},
            ],
        })
        assert response.status_code == 200
        data = response.json()
        docs = data["documents"]
        assert len(docs) == 3
        assert docs[0]["resolved_expiration_date"] == "2026-03-14"
        assert docs[0]["expiration_was_computed"] is True
        assert docs[1] == {"file_name": "bad.pdf", "success": False, "error": "Resposta vazia da IA"}
        assert docs[2]["has_validity"] is False
        assert data["metrics"]["documents_failed"] == 1

    def test_resolve_with_explicit_catalog_and_existing_list(self, client):
        response = client.post("/api/resolve", json={
            "employee_id": "emp-1",
            "today": "2025-06-01",
            "catalog": [{"id": "t1", "code": "ASO", "name": "ASO", "default_validity_years": 1}],
            "existing_documents": [{"id": "old", "document_type_id": "t1", "expiration_date": "2025-01-01"}],
            "results": [{"fileName": "aso.pdf", "success": True, "document_type_code": "ASO"}],
        })
        doc = response.json()["documents"][0]
        assert doc["matched_type_id"] == "t1"
        assert doc["is_update_candidate"] is True
        assert doc["existing_document_id"] == "old"

    def test_existing_list_requires_employee(self, client):
        response = client.post("/api/resolve", json={
            "results": [],
            "existing_documents": [{"id": "old", "document_type_id": "t1"}],
        })
        assert response.status_code == 400

    def test_auto_create_types(self, client, catalog):
        response = client.post("/api/resolve", json={
            "results": [{"fileName": "x.pdf", "success": True, "document_type_code": "TERMO_CONF",
                         "document_type_name": "Termo de Confidencialidade"}],
            "auto_create_types": True,
        })
        data = response.json()
        assert data["documents"][0]["type_auto_created"] is True
        assert data["created_types"][0]["code"] == "TERMO_CONF"
        assert [t.code for t in catalog.list()] == ["TERMO_CONF"]

    def test_malformed_item(self, client):
        response = client.post("/api/resolve", json={"results": [42, {"fileName": "a.pdf"}]})
        assert response.status_code == 200
        assert [d["success"] for d in response.json()["documents"]] == [False, False]


class TestAuditEndpoint:
    """Tests for /api/audit."""

    def test_audit(self, client):
        response = client.post("/api/audit", json={
            "today": "2025-06-01",
            "documents": [{
                "id": "d1",
                "expiration_date": "2025-06-03",
                "observations": "",
                "status": "approved",
                "file_path": "a.pdf",
                "document_type": {"code": "NR35", "name": "NR-35"},
                "employee": {"id": "e1", "full_name": "Ana", "company_id": "co", "status": "ATIVO"},
            }],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["stats"]["total_expiring"] == 1
        assert data["stats"]["urgent"] == 1
        assert data["stats"]["issues"]["missing_signatures"] == 1
        assert "URGENTE" in data["alert_message"]

    def test_negative_window(self, client):
        response = client.post("/api/audit", json={"documents": [], "expiring_window_days": -1})
        assert response.status_code == 400

"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from conduit.api.app import app, get_action, get_optional_store, get_store
from conduit.models.mapping import ObjectSchema, SchemaField


@pytest.fixture
def client(store, action):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_optional_store] = lambda: store
    app.dependency_overrides[get_action] = lambda: action
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestMappingTest:
    def test_maps_input_object(self, client):
        response = client.post("/api/mappings/test", json={
            "inputObject": {"first": "Ada", "age": 36},
            "mapping": {"name": "{{first}}", "age": "{{age}}"},
        })

        assert response.status_code == 200
        assert response.json() == {
            "resultObject": {"name": "Ada", "age": 36},
            "isValid": True,
            "validationErrors": [],
        }

    def test_accepts_json_strings_and_full_mapping_records(self, client):
        response = client.post("/api/mappings/test", json={
            "inputObject": json.dumps({"first": "Ada", "last": "Lovelace"}),
            "mapping": json.dumps({"mapping": {"name": "{{first}}"}, "passThrough": True, "unset": ["last"]}),
        })

        assert response.status_code == 200
        assert response.json()["resultObject"] == {"first": "Ada", "name": "Ada"}

    def test_validates_against_inline_schema(self, client):
        response = client.post("/api/mappings/test", json={
            "inputObject": {"age": 36},
            "mapping": {"age": "{{age}}", "email": "{{email}}"},
            "schema": {"fields": [
                {"name": "age", "data_type": "string"},
                {"name": "email", "required": True},
            ]},
            "validation": True,
        })

        body = response.json()
        assert body["isValid"] is False
        assert body["validationErrors"] == [
            "Field 'age' must be of type string, got int",
            "Field 'email' is required",
        ]

    def test_validates_against_stored_schema(self, client, store):
        store.save_schema(ObjectSchema(id="person", fields=[SchemaField(name="name", required=True)]))

        response = client.post("/api/mappings/test", json={
            "inputObject": {"first": "Ada"},
            "mapping": {"name": "{{first}}"},
            "schema": "person",
            "validation": True,
        })

        assert response.status_code == 200
        assert response.json()["isValid"] is True

    def test_stored_schema_id_reports_violations(self, client, store):
        store.save_schema(ObjectSchema(id="person", fields=[SchemaField(name="email", required=True)]))

        response = client.post("/api/mappings/test", json={
            "inputObject": {"first": "Ada"},
            "mapping": {"name": "{{first}}"},
            "schema": "person",
            "validation": True,
        })

        assert response.status_code == 200
        assert response.json()["validationErrors"] == ["Field 'email' is required"]

    def test_schema_as_json_string(self, client):
        response = client.post("/api/mappings/test", json={
            "inputObject": {"first": "Ada"},
            "mapping": {"name": "{{first}}"},
            "schema": json.dumps({"fields": [{"name": "email", "required": True}]}),
            "validation": True,
        })

        assert response.status_code == 200
        assert response.json()["isValid"] is False

    @pytest.mark.parametrize("body", [
        {"mapping": {"a": "{{b}}"}},
        {"inputObject": "{not json", "mapping": {"a": "{{b}}"}},
        {"inputObject": "[1, 2]", "mapping": {"a": "{{b}}"}},
        {"inputObject": {"b": 1}, "mapping": {"a": "{{b"}},
    ])
    def test_malformed_requests(self, client, body):
        response = client.post("/api/mappings/test", json=body)

        assert response.status_code == 400
        assert set(response.json()) == {"error", "message"}

    def test_nothing_is_persisted(self, client, store):
        client.post("/api/mappings/test", json={"inputObject": {}, "mapping": {"a": "x"}})
        assert store.list_mappings() == []


class TestRunRoutes:
    def test_run_returns_trace_and_logs_it(self, client, store, make_definition, seed_source, contacts):
        seed_source(*contacts)
        definition = make_definition()

        response = client.post(f"/api/synchronizations-run/{definition.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["level"] == "INFO"
        assert body["message"] == "Synchronized 3 successfully"
        assert body["stackTrace"][0] == "Check for a valid synchronization ID"

        logs = client.get(f"/api/synchronizations-logs/{definition.id}").json()
        assert [log["message"] for log in logs] == ["Synchronized 3 successfully"]
        assert logs[0]["jobClass"] == "conduit.engine.run_action.SynchronizationAction"

        contracts = client.get(f"/api/synchronizations-contracts/{definition.id}").json()
        assert sorted(contract["originId"] for contract in contracts) == ["c1", "c2", "c3"]

    def test_unknown_synchronization_is_still_200(self, client):
        response = client.post("/api/synchronizations-run/404")

        assert response.status_code == 200
        assert response.json()["level"] == "WARNING"
        assert response.json()["message"] == "Synchronization not found: 404"

    def test_test_route_is_a_dry_run(self, client, store, make_definition, seed_source, contacts):
        seed_source(*contacts)
        definition = make_definition()

        response = client.post(f"/api/synchronizations-test/{definition.id}")

        assert response.json()["arguments"]["dryRun"] is True
        assert response.json()["objectsSynchronized"] == 3
        assert store.list_contracts(definition.id) == []
        assert store.list_job_logs() == []

    def test_logs_of_unknown_synchronization(self, client):
        response = client.get("/api/synchronizations-logs/77")

        assert response.status_code == 404
        assert response.json()["error"] == "Not found"


class TestAdminRoutes:
    def test_synchronization_lifecycle(self, client):
        created = client.post("/api/synchronizations", json={
            "name": "Contacts",
            "sourceConfig": {"type": "memory", "collection": "in"},
            "targetConfig": {"type": "memory", "collection": "out"},
            "mapping": {"mapping": {"a": "{{b}}"}},
        })
        assert created.status_code == 201
        synchronization_id = created.json()["id"]
        assert created.json()["version"] == "0.0.1"

        updated = client.put(f"/api/synchronizations/{synchronization_id}", json={"name": "Renamed"})
        assert updated.json()["version"] == "0.0.2"
        assert client.get(f"/api/synchronizations/{synchronization_id}").json()["name"] == "Renamed"
        assert len(client.get("/api/synchronizations").json()) == 1

        assert client.delete(f"/api/synchronizations/{synchronization_id}").status_code == 200
        assert client.get(f"/api/synchronizations/{synchronization_id}").status_code == 404

    def test_create_with_bad_mapping(self, client):
        response = client.post("/api/synchronizations", json={
            "name": "Contacts",
            "sourceConfig": {"type": "memory"},
            "targetConfig": {"type": "memory"},
            "mapping": {"mapping": {"a": "{{b"}},
        })
        assert response.status_code == 400

    def test_create_with_missing_fields(self, client):
        response = client.post("/api/synchronizations", json={"name": "Contacts"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid input"

    def test_delete_refused_while_contracts_exist(self, client, make_definition, seed_source, contacts):
        seed_source(*contacts)
        definition = make_definition()
        client.post(f"/api/synchronizations-run/{definition.id}")

        response = client.delete(f"/api/synchronizations/{definition.id}")

        assert response.status_code == 409

    def test_mapping_lifecycle(self, client):
        created = client.post("/api/mappings", json={"name": "people", "mapping": {"a": "{{b}}"}})
        assert created.status_code == 201
        mapping_id = created.json()["id"]

        updated = client.put(f"/api/mappings/{mapping_id}", json={"mapping": {"a": "{{c}}"}})
        assert updated.json()["version"] == "0.0.2"

        bad = client.put(f"/api/mappings/{mapping_id}", json={"mapping": {"a": "{{c"}})
        assert bad.status_code == 400

        assert client.delete(f"/api/mappings/{mapping_id}").status_code == 200
        assert client.get(f"/api/mappings/{mapping_id}").status_code == 404

    def test_mapping_test_by_stored_id(self, client):
        mapping_id = client.post("/api/mappings", json={"mapping": {"a": "{{b}}"}}).json()["id"]

        response = client.post("/api/mappings/test", json={"inputObject": {"b": 2}, "mapping": mapping_id})

        assert response.json()["resultObject"] == {"a": 2}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "memory" in response.json()["connectors"]

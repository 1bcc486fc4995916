"""Tests for project history and project restore endpoints."""

from fastapi import status

from tests.consts import API_BASE


def _save(client, data, version, client_request_id):
    return client.post(
        f"{API_BASE}/state",
        json={"data": data, "version": version, "client_request_id": client_request_id},
    )


class TestEntityHistory:
    """Tests for GET /entities/{entity_id}/history."""

    def test_newest_first(self, state_client, sample_projects):
        _save(state_client, {"projects": sample_projects}, 0, "r1")
        renamed = [dict(sample_projects[0], name="Renamed"), sample_projects[1]]
        _save(state_client, {"projects": renamed}, 1, "r2")

        response = state_client.get(f"{API_BASE}/entities/p1/history")

        assert response.status_code == status.HTTP_200_OK
        history = response.json()
        assert [h["action_type"] for h in history] == ["update", "create"]
        assert history[0]["payload"] == {"changed_fields": ["name"]}
        assert history[0]["snapshot_after"]["name"] == "Renamed"
        assert history[0]["user_id"] == "user-123"

    def test_unchanged_project_has_no_new_entry(self, state_client, sample_projects):
        _save(state_client, {"projects": sample_projects}, 0, "r1")
        _save(state_client, {"projects": [dict(sample_projects[0], name="Renamed"), sample_projects[1]]}, 1, "r2")

        response = state_client.get(f"{API_BASE}/entities/p2/history")

        assert [h["action_type"] for h in response.json()] == ["create"]

    def test_unknown_entity_is_empty(self, state_client):
        response = state_client.get(f"{API_BASE}/entities/nope/history")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []


class TestEntityRestore:
    """Tests for POST /entities/{entity_id}/restore."""

    def test_restore_earlier_state(self, state_client, sample_projects):
        _save(state_client, {"projects": sample_projects}, 0, "r1")
        _save(state_client, {"projects": [dict(sample_projects[0], name="Renamed"), sample_projects[1]]}, 1, "r2")
        create_entry = state_client.get(f"{API_BASE}/entities/p1/history").json()[-1]

        response = state_client.post(f"{API_BASE}/entities/p1/restore", json={"eventId": create_entry["id"]})

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["data"]["version"] == 3
        assert body["data"]["projects"][0]["name"] == "Launch"

        latest = state_client.get(f"{API_BASE}/entities/p1/history").json()[0]
        assert latest["action_type"] == "restore"
        assert latest["payload"] == {"source_event_id": create_entry["id"]}

    def test_entry_of_another_project(self, state_client, sample_projects):
        _save(state_client, {"projects": sample_projects}, 0, "r1")
        p1_entry = state_client.get(f"{API_BASE}/entities/p1/history").json()[0]

        response = state_client.post(f"{API_BASE}/entities/p2/restore", json={"eventId": p1_entry["id"]})

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_missing_event_id(self, state_client):
        response = state_client.post(f"{API_BASE}/entities/p1/restore", json={})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unavailable_without_state_database(self, client):
        response = client.post(f"{API_BASE}/entities/p1/restore", json={"eventId": 1})

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

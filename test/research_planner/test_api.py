"""
Tests for the REST adapter: status-code mapping, camelCase wire format,
validation errors and the access gate.
"""

import inspect

from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from research_planner.api import app, get_storage

PROJECT = {"title": "R", "goal": "G", "userId": 1}


def _create_tree(client):
    project = client.post("/api/projects", json=PROJECT).json()
    milestone = client.post("/api/milestones", json={
        "title": "Mid-term", "deadline": "2024-06-01T00:00:00", "projectId": project["id"]
    }).json()
    task = client.post("/api/tasks", json={
        "title": "Survey",
        "status": "NOT_STARTED",
        "dueDate": "2024-05-01T00:00:00",
        "milestoneId": milestone["id"],
    }).json()
    return project, milestone, task


class TestAccessGate:

    def test_missing_header_is_unauthorized(self, api_client):
        response = api_client.get("/api/projects", headers={"X-User-Id": ""})
        assert response.status_code == 401
        assert response.json() == {"message": "Unauthorized"}

    def test_gate_runs_before_storage(self, storage):
        app.dependency_overrides[get_storage] = lambda: storage
        try:
            client = TestClient(app)
            assert client.delete("/api/projects/1").status_code == 401
            assert client.post("/api/projects", json=PROJECT).status_code == 401
            assert storage.get_all_projects() == []
        finally:
            app.dependency_overrides.clear()

    def test_health_check_is_not_gated(self, api_client):
        response = api_client.get("/healthz", headers={"X-User-Id": ""})
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestProjectsAPI:

    def test_create_returns_201_with_record(self, api_client):
        response = api_client.post("/api/projects", json=PROJECT)
        assert response.status_code == 201
        assert response.json() == {"id": 1, "title": "R", "goal": "G", "userId": 1}

    def test_user_id_defaults_to_one(self, api_client):
        response = api_client.post("/api/projects", json={"title": "R", "goal": "G"})
        assert response.json()["userId"] == 1

    def test_missing_required_field_is_400(self, api_client):
        response = api_client.post("/api/projects", json={"title": "R"})
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Invalid request data"
        assert any(error["loc"][-1] == "goal" for error in body["errors"])

    def test_get_and_list(self, api_client):
        api_client.post("/api/projects", json=PROJECT)
        assert api_client.get("/api/projects/1").json()["title"] == "R"
        assert len(api_client.get("/api/projects").json()) == 1

    def test_get_missing_is_404(self, api_client):
        response = api_client.get("/api/projects/42")
        assert response.status_code == 404
        assert response.json() == {"message": "Project not found"}

    def test_non_numeric_id_is_400(self, api_client):
        assert api_client.get("/api/projects/abc").status_code == 400

    def test_update_returns_200(self, api_client):
        api_client.post("/api/projects", json=PROJECT)
        response = api_client.put("/api/projects/1", json={"goal": "New goal"})
        assert response.status_code == 200
        assert response.json() == {"id": 1, "title": "R", "goal": "New goal", "userId": 1}

    def test_update_missing_is_404(self, api_client):
        assert api_client.patch("/api/projects/9", json={"title": "X"}).status_code == 404

    def test_update_with_null_required_field_is_400(self, api_client):
        api_client.post("/api/projects", json=PROJECT)
        assert api_client.put("/api/projects/1", json={"title": None}).status_code == 400

    def test_delete_cascades_and_returns_204(self, api_client):
        project, milestone, task = _create_tree(api_client)

        response = api_client.delete(f"/api/projects/{project['id']}")
        assert response.status_code == 204
        assert response.content == b""

        assert api_client.get(f"/api/milestones/{milestone['id']}").status_code == 404
        assert api_client.get(f"/api/tasks/{task['id']}").status_code == 404
        assert api_client.delete(f"/api/projects/{project['id']}").status_code == 404


class TestMilestonesAPI:

    def test_create_under_missing_project_is_400(self, api_client):
        response = api_client.post("/api/milestones", json={
            "title": "Orphan", "deadline": "2024-06-01", "projectId": 5
        })
        assert response.status_code == 400
        assert response.json()["errors"] == ["Project 5 not found"]

    def test_filter_by_project(self, api_client):
        project, milestone, _ = _create_tree(api_client)
        other = api_client.post("/api/projects", json=PROJECT).json()
        api_client.post("/api/milestones", json={
            "title": "Other", "deadline": "2024-07-01", "projectId": other["id"]
        })

        filtered = api_client.get("/api/milestones", params={"projectId": project["id"]}).json()
        assert [m["id"] for m in filtered] == [milestone["id"]]
        assert filtered[0]["projectId"] == project["id"]
        assert len(api_client.get("/api/milestones").json()) == 2

    def test_invalid_project_filter_is_400(self, api_client):
        assert api_client.get("/api/milestones", params={"projectId": "x"}).status_code == 400

    def test_update_deadline(self, api_client):
        _, milestone, _ = _create_tree(api_client)
        response = api_client.put(f"/api/milestones/{milestone['id']}", json={"deadline": "2024-07-15"})
        assert response.status_code == 200
        assert response.json()["deadline"].startswith("2024-07-15")

    def test_delete_removes_tasks(self, api_client):
        _, milestone, task = _create_tree(api_client)
        assert api_client.delete(f"/api/milestones/{milestone['id']}").status_code == 204
        assert api_client.get("/api/tasks").json() == []
        assert api_client.delete(f"/api/milestones/{milestone['id']}").status_code == 404


class TestTasksAPI:

    def test_create_applies_defaults(self, api_client):
        _, milestone, _ = _create_tree(api_client)
        response = api_client.post("/api/tasks", json={
            "title": "Draft", "dueDate": "2024-05-10", "milestoneId": milestone["id"]
        })
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "NOT_STARTED"
        assert body["attachments"] == []
        assert body["description"] is None

    def test_invalid_status_is_400(self, api_client):
        _, milestone, _ = _create_tree(api_client)
        response = api_client.post("/api/tasks", json={
            "title": "Draft", "status": "DONE", "dueDate": "2024-05-10", "milestoneId": milestone["id"]
        })
        assert response.status_code == 400

    def test_create_under_missing_milestone_is_400(self, api_client):
        response = api_client.post("/api/tasks", json={
            "title": "Orphan", "dueDate": "2024-05-10", "milestoneId": 77
        })
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid task data"

    def test_status_patch_preserves_other_fields(self, api_client):
        _, milestone, _ = _create_tree(api_client)
        created = api_client.post("/api/tasks", json={
            "title": "Analyse",
            "description": "Run statistics",
            "dueDate": "2024-05-10T09:30:00",
            "notes": "Use R",
            "attachments": [{"id": "a1", "name": "data.csv", "type": "text/csv", "url": "/files/data.csv"}],
            "milestoneId": milestone["id"],
        }).json()

        updated = api_client.patch(f"/api/tasks/{created['id']}", json={"status": "COMPLETED"}).json()

        assert updated["status"] == "COMPLETED"
        assert {k: v for k, v in updated.items() if k != "status"} == \
            {k: v for k, v in created.items() if k != "status"}

    def test_filter_by_milestone_with_no_tasks(self, api_client):
        project, _, _ = _create_tree(api_client)
        empty = api_client.post("/api/milestones", json={
            "title": "Empty", "deadline": "2024-08-01", "projectId": project["id"]
        }).json()

        response = api_client.get("/api/tasks", params={"milestoneId": empty["id"]})
        assert response.status_code == 200
        assert response.json() == []

    def test_delete_task(self, api_client):
        _, _, task = _create_tree(api_client)
        assert api_client.delete(f"/api/tasks/{task['id']}").status_code == 204
        assert api_client.delete(f"/api/tasks/{task['id']}").status_code == 404


class TestExecutionModel:

    def test_routes_run_on_the_event_loop(self):
        routes = [route for route in app.routes if isinstance(route, APIRoute)]
        assert routes
        assert all(inspect.iscoroutinefunction(route.endpoint) for route in routes)


class TestUnexpectedErrors:

    def test_storage_failure_maps_to_500(self, storage):
        class BrokenStorage:
            def get_all_projects(self):
                raise RuntimeError("boom")

        app.dependency_overrides[get_storage] = lambda: BrokenStorage()
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = client.get("/api/projects", headers={"X-User-Id": "1"})
            assert response.status_code == 500
            assert response.json() == {"message": "Internal server error"}
        finally:
            app.dependency_overrides.clear()

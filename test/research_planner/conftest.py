"""
Shared fixtures for Research Planner tests.

Every test gets its own PlannerStorage, so no state leaks between tests.
"""

import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

project_root = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(project_root))

from research_planner.api import app as fastapi_app, get_storage
from research_planner.storage import PlannerStorage

AUTH_HEADERS = {"X-User-Id": "1"}


@pytest.fixture
def storage():
    """Fresh storage with only the default user."""
    return PlannerStorage()


@pytest.fixture
def project_tree(storage):
    """
    Project P with milestones M1, M2 and tasks T1, T2 in M1 and T3 in M2,
    plus an unrelated project with one milestone and task.
    """
    project = storage.create_project("Thesis", "Finish the thesis")
    m1 = storage.create_milestone("Mid-term", datetime(2024, 6, 1), project["id"])
    m2 = storage.create_milestone("Final", datetime(2024, 9, 1), project["id"])
    t1 = storage.create_task("Survey", datetime(2024, 5, 1), m1["id"])
    t2 = storage.create_task("Experiments", datetime(2024, 5, 20), m1["id"], status="IN_PROGRESS")
    t3 = storage.create_task("Write-up", datetime(2024, 8, 15), m2["id"])

    other = storage.create_project("Side project", "Unrelated work")
    other_milestone = storage.create_milestone("Demo", datetime(2024, 7, 1), other["id"])
    other_task = storage.create_task("Slides", datetime(2024, 6, 25), other_milestone["id"])

    return SimpleNamespace(
        project=project, m1=m1, m2=m2, t1=t1, t2=t2, t3=t3,
        other=other, other_milestone=other_milestone, other_task=other_task,
    )


@pytest.fixture
def api_client(storage):
    """FastAPI test client bound to the per-test storage."""
    fastapi_app.dependency_overrides[get_storage] = lambda: storage

    with TestClient(fastapi_app) as client:
        client.headers.update(AUTH_HEADERS)
        yield client

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def plan_data():
    """Plan dictionary shaped like a parsed YAML file."""
    return {
        "projects": [
            {
                "title": "Image recognition",
                "goal": "Evaluate CNN architectures",
                "milestones": [
                    {
                        "title": "Mid-term presentation",
                        "deadline": "2023-12-15",
                        "tasks": [
                            {"title": "Literature review", "due_date": "2023-11-20", "status": "COMPLETED"},
                            {"title": "Dataset", "dueDate": "2023-12-01"},
                        ],
                    },
                    {"title": "Thesis submission", "deadline": "2024-02-28"},
                ],
            }
        ]
    }

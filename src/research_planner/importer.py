"""
YAML Plan Importer

Builds project/milestone/task trees in a PlannerStorage from YAML plan
files. Each entry is validated with the same pydantic models the REST API
uses; a bad entry is reported and skipped together with its subtree while
the rest of the plan is still imported.
"""

import logging
from typing import Dict, Any, List, Tuple

import yaml
from pydantic import ValidationError

from .models import MilestoneCreate, ProjectCreate, TaskCreate
from .storage import DEFAULT_USER_ID, PlannerStorage

logger = logging.getLogger(__name__)


def import_plan(storage: PlannerStorage, plan_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Import every project in ``plan_data`` into ``storage``.

    Expected shape::

        projects:
          - title: ...
            goal: ...
            milestones:
              - title: ...
                deadline: 2024-06-01
                tasks:
                  - title: ...
                    due_date: 2024-05-01

    Args:
        storage: Target storage
        plan_data: Parsed YAML plan

    Returns:
        Dict with created counts and a list of error messages

    Raises:
        ValueError: If ``projects`` is not a list
    """
    stats = {
        "projects_created": 0,
        "milestones_created": 0,
        "tasks_created": 0,
        "errors": [],
    }

    projects = plan_data.get("projects", [])
    if not isinstance(projects, list):
        raise ValueError("YAML 'projects' must be a list")

    for project_data in projects:
        try:
            project, milestones = _import_project(storage, project_data)
        except (ValidationError, ValueError) as e:
            stats["errors"].append(f"Failed to import project '{_entry_title(project_data)}': {e}")
            continue
        stats["projects_created"] += 1

        for milestone_data in milestones:
            try:
                milestone, tasks = _import_milestone(storage, milestone_data, project["id"])
            except (ValidationError, ValueError) as e:
                stats["errors"].append(
                    f"Failed to import milestone '{_entry_title(milestone_data)}': {e}"
                )
                continue
            stats["milestones_created"] += 1

            for task_data in tasks:
                try:
                    _import_task(storage, task_data, milestone["id"])
                except (ValidationError, ValueError) as e:
                    stats["errors"].append(f"Failed to import task '{_entry_title(task_data)}': {e}")
                    continue
                stats["tasks_created"] += 1

    logger.info(
        f"Imported {stats['projects_created']} projects, {stats['milestones_created']} milestones, "
        f"{stats['tasks_created']} tasks ({len(stats['errors'])} errors)"
    )
    return stats


def _entry_title(entry: Any) -> str:
    return entry.get("title", "untitled") if isinstance(entry, dict) else "invalid"


def _nested_list(entry: Dict[str, Any], key: str) -> List[Any]:
    value = entry.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"YAML '{key}' must be a list")
    return value


def _import_project(storage: PlannerStorage, project_data: Any) -> Tuple[Dict[str, Any], List[Any]]:
    if not isinstance(project_data, dict):
        raise ValueError("Project entry must be a dictionary")
    milestones = _nested_list(project_data, "milestones")
    payload = ProjectCreate.model_validate(_without(project_data, "milestones"))
    project = storage.create_project(
        title=payload.title,
        goal=payload.goal,
        user_id=payload.user_id or DEFAULT_USER_ID,
    )
    return project, milestones


def _import_milestone(
    storage: PlannerStorage, milestone_data: Any, project_id: int
) -> Tuple[Dict[str, Any], List[Any]]:
    if not isinstance(milestone_data, dict):
        raise ValueError("Milestone entry must be a dictionary")
    tasks = _nested_list(milestone_data, "tasks")
    # the enclosing project always wins over a parent id written in the entry
    payload = MilestoneCreate.model_validate(
        {**_without(milestone_data, "tasks", "project_id", "projectId"), "project_id": project_id}
    )
    return storage.create_milestone(**payload.model_dump()), tasks


def _import_task(storage: PlannerStorage, task_data: Any, milestone_id: int) -> Dict[str, Any]:
    if not isinstance(task_data, dict):
        raise ValueError("Task entry must be a dictionary")
    payload = TaskCreate.model_validate(
        {**_without(task_data, "milestone_id", "milestoneId"), "milestone_id": milestone_id}
    )
    return storage.create_task(**payload.model_dump())


def _without(entry: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if k not in keys}


def load_plan_file(yaml_file_path: str) -> Dict[str, Any]:
    """
    Read and parse a YAML plan file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid YAML or not a mapping
    """
    try:
        with open(yaml_file_path, 'r', encoding='utf-8') as f:
            plan_data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"YAML file not found: {yaml_file_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML format: {str(e)}")

    if not isinstance(plan_data, dict):
        raise ValueError("YAML file must contain a dictionary at root level")
    return plan_data


def import_plan_from_file(storage: PlannerStorage, yaml_file_path: str) -> Dict[str, Any]:
    """Import a plan from a YAML file into ``storage``."""
    return import_plan(storage, load_plan_file(yaml_file_path))

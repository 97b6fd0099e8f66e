"""
Planner Storage Layer with Cascading Deletes

Repository over the in-memory EntityStore for users, projects, milestones
and tasks. Provides per-entity CRUD, parent-id relationship queries, and
hierarchical removal: deleting a project removes its milestones, and
deleting a milestone removes its tasks, before the parent itself goes.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

from .models import TaskStatus
from .store import EntityStore, EntityType

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = 1

# parent type -> (child type, field on the child holding the parent id)
HIERARCHY: Dict[EntityType, Tuple[EntityType, str]] = {
    EntityType.PROJECT: (EntityType.MILESTONE, "project_id"),
    EntityType.MILESTONE: (EntityType.TASK, "milestone_id"),
}

UPDATABLE_FIELDS: Dict[EntityType, frozenset] = {
    EntityType.PROJECT: frozenset({"title", "goal", "user_id"}),
    EntityType.MILESTONE: frozenset({"title", "deadline", "project_id"}),
    EntityType.TASK: frozenset({
        "title", "description", "status", "due_date", "notes", "attachments", "milestone_id"
    }),
}


class MissingParentError(ValueError):
    """Raised when a milestone or task is created under a parent that does not exist."""

    def __init__(self, entity_type: EntityType, entity_id: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.value.capitalize()} {entity_id} not found")


class DuplicateUsernameError(ValueError):
    """Raised when a user is created with a username already taken."""


class PlannerStorage:
    """
    Repository for research-project planning data.

    Features:
    - Explicit store instance per repository (fresh state per test or app)
    - Parent-existence checks on milestone/task creation (configurable)
    - Post-order cascading deletes run under the store lock
    - Not-found reported as None/False, never raised
    """

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        strict_references: bool = True,
        default_username: Optional[str] = "yamada",
        default_password: str = "password",
    ):
        """
        Initialize PlannerStorage.

        Args:
            store: Backing store; a new empty one is created when omitted
            strict_references: Reject milestones/tasks whose parent is missing
            default_username: Username of the user created at start-up, None to skip
            default_password: Password of the default user
        """
        self._store = store if store is not None else EntityStore()
        self.strict_references = strict_references

        if default_username is not None:
            self.create_user(default_username, default_password)

    @property
    def store(self) -> EntityStore:
        return self._store

    # User operations

    def create_user(self, username: str, password: str) -> Dict[str, Any]:
        with self._store.lock:
            if self.get_user_by_username(username) is not None:
                raise DuplicateUsernameError(f"Username '{username}' already exists")
            return self._store.insert(EntityType.USER, {"username": username, "password": password})

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self._store.get(EntityType.USER, user_id)

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        matches = self._store.find(EntityType.USER, "username", username)
        return matches[0] if matches else None

    # Project operations

    def create_project(self, title: str, goal: str, user_id: int = DEFAULT_USER_ID) -> Dict[str, Any]:
        project = self._store.insert(EntityType.PROJECT, {
            "title": title,
            "goal": goal,
            "user_id": user_id,
        })
        logger.info(f"Created project {project['id']} '{title}'")
        return project

    def get_project(self, project_id: int) -> Optional[Dict[str, Any]]:
        return self._store.get(EntityType.PROJECT, project_id)

    def get_all_projects(self) -> List[Dict[str, Any]]:
        return self._store.get_all(EntityType.PROJECT)

    def get_projects_by_user_id(self, user_id: int) -> List[Dict[str, Any]]:
        return self._store.find(EntityType.PROJECT, "user_id", user_id)

    def update_project(self, project_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(EntityType.PROJECT, project_id, fields)

    def delete_project(self, project_id: int) -> bool:
        """
        Delete a project together with its milestones and their tasks.

        Returns:
            True if the project existed, False if it was already absent
        """
        return self._cascade_delete(EntityType.PROJECT, project_id)

    # Milestone operations

    def create_milestone(self, title: str, deadline: datetime, project_id: int) -> Dict[str, Any]:
        with self._store.lock:
            self._check_parent(EntityType.PROJECT, project_id)
            milestone = self._store.insert(EntityType.MILESTONE, {
                "title": title,
                "deadline": deadline,
                "project_id": project_id,
            })
        logger.info(f"Created milestone {milestone['id']} '{title}' in project {project_id}")
        return milestone

    def get_milestone(self, milestone_id: int) -> Optional[Dict[str, Any]]:
        return self._store.get(EntityType.MILESTONE, milestone_id)

    def get_all_milestones(self) -> List[Dict[str, Any]]:
        return self._store.get_all(EntityType.MILESTONE)

    def get_milestones_by_project_id(self, project_id: int) -> List[Dict[str, Any]]:
        return self._children(EntityType.PROJECT, project_id)

    def update_milestone(self, milestone_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(EntityType.MILESTONE, milestone_id, fields)

    def delete_milestone(self, milestone_id: int) -> bool:
        """
        Delete a milestone together with its tasks.

        Returns:
            True if the milestone existed, False if it was already absent
        """
        return self._cascade_delete(EntityType.MILESTONE, milestone_id)

    # Task operations

    def create_task(
        self,
        title: str,
        due_date: datetime,
        milestone_id: int,
        description: Optional[str] = None,
        status: str = TaskStatus.NOT_STARTED.value,
        notes: Optional[str] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        with self._store.lock:
            self._check_parent(EntityType.MILESTONE, milestone_id)
            task = self._store.insert(EntityType.TASK, {
                "title": title,
                "description": description,
                "status": TaskStatus(status).value,
                "due_date": due_date,
                "notes": notes,
                "attachments": list(attachments or []),
                "milestone_id": milestone_id,
            })
        logger.info(f"Created task {task['id']} '{title}' in milestone {milestone_id}")
        return task

    def get_task(self, task_id: int) -> Optional[Dict[str, Any]]:
        return self._store.get(EntityType.TASK, task_id)

    def get_all_tasks(self) -> List[Dict[str, Any]]:
        return self._store.get_all(EntityType.TASK)

    def get_tasks_by_milestone_id(self, milestone_id: int) -> List[Dict[str, Any]]:
        return self._children(EntityType.MILESTONE, milestone_id)

    def update_task(self, task_id: int, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if "status" in fields:
            fields = {**fields, "status": TaskStatus(fields["status"]).value}
        return self._update(EntityType.TASK, task_id, fields)

    def delete_task(self, task_id: int) -> bool:
        return self._cascade_delete(EntityType.TASK, task_id)

    # Shared helpers

    def _check_parent(self, parent_type: EntityType, parent_id: int) -> None:
        if self._store.get(parent_type, parent_id) is not None:
            return
        if self.strict_references:
            logger.warning(f"Rejected child of missing {parent_type.value} {parent_id}")
            raise MissingParentError(parent_type, parent_id)
        logger.warning(f"Accepted child of missing {parent_type.value} {parent_id}")

    def _children(self, parent_type: EntityType, parent_id: int) -> List[Dict[str, Any]]:
        child_type, parent_field = HIERARCHY[parent_type]
        return self._store.find(child_type, parent_field, parent_id)

    def _update(
        self, entity_type: EntityType, record_id: int, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        changes = {key: value for key, value in fields.items() if key != "id"}
        unknown = set(changes) - UPDATABLE_FIELDS[entity_type]
        if unknown:
            raise ValueError(f"Unknown {entity_type.value} fields: {sorted(unknown)}")
        return self._store.patch(entity_type, record_id, changes)

    def _cascade_delete(self, entity_type: EntityType, record_id: int) -> bool:
        """
        Remove a record and all of its descendants.

        Walks the hierarchy with an explicit worklist and removes nodes in
        post-order, so every child is gone before its parent. The store lock
        is held throughout; readers never see a partially removed subtree.
        """
        with self._store.lock:
            if self._store.get(entity_type, record_id) is None:
                return False

            removal_order: List[Tuple[EntityType, int]] = []
            worklist: List[Tuple[EntityType, int, bool]] = [(entity_type, record_id, False)]
            while worklist:
                node_type, node_id, expanded = worklist.pop()
                if expanded:
                    removal_order.append((node_type, node_id))
                    continue

                worklist.append((node_type, node_id, True))
                if node_type in HIERARCHY:
                    child_type = HIERARCHY[node_type][0]
                    for child in self._children(node_type, node_id):
                        worklist.append((child_type, child["id"], False))

            removed: Dict[EntityType, int] = {}
            for node_type, node_id in removal_order:
                if self._store.remove(node_type, node_id):
                    removed[node_type] = removed.get(node_type, 0) + 1

        cascaded = ", ".join(
            f"{count} {node_type.value}(s)"
            for node_type, count in removed.items()
            if node_type != entity_type
        )
        logger.info(
            f"Deleted {entity_type.value} {record_id}"
            + (f" and {cascaded}" if cascaded else "")
        )
        return True

"""
In-Memory Entity Store

Holds the authoritative collections for users, projects, milestones and
tasks, and allocates per-type identifiers. All mutation goes through a
single re-entrant lock so that multi-step operations (cascading deletes)
can be made indivisible by holding the lock around them.
"""

import copy
import threading
from enum import Enum
from typing import Optional, Dict, Any, List


class EntityType(str, Enum):
    """Entity collections kept by the store."""
    USER = "user"
    PROJECT = "project"
    MILESTONE = "milestone"
    TASK = "task"


class EntityStore:
    """
    Dictionary-backed record store with monotonically increasing ids.

    Features:
    - One collection and one id counter per entity type
    - Ids start at 1 and are never reused, even after removal
    - Shallow-merge patching with immutable ids
    - Copies handed out on read so callers cannot mutate stored state
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._records: Dict[EntityType, Dict[int, Dict[str, Any]]] = {
            entity_type: {} for entity_type in EntityType
        }
        self._counters: Dict[EntityType, int] = {entity_type: 0 for entity_type in EntityType}

    def next_id(self, entity_type: EntityType) -> int:
        """Allocate the next identifier for an entity type."""
        with self.lock:
            self._counters[entity_type] += 1
            return self._counters[entity_type]

    def insert(self, entity_type: EntityType, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Store a new record under a freshly allocated id.

        Any ``id`` already present in ``record`` is overwritten.

        Args:
            entity_type: Collection to insert into
            record: Field values of the new record

        Returns:
            Copy of the stored record including its id
        """
        with self.lock:
            stored = copy.deepcopy(record)
            stored["id"] = self.next_id(entity_type)
            self._records[entity_type][stored["id"]] = stored
            return copy.deepcopy(stored)

    def get(self, entity_type: EntityType, record_id: int) -> Optional[Dict[str, Any]]:
        with self.lock:
            record = self._records[entity_type].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def get_all(self, entity_type: EntityType) -> List[Dict[str, Any]]:
        with self.lock:
            return [copy.deepcopy(record) for record in self._records[entity_type].values()]

    def find(self, entity_type: EntityType, field: str, value: Any) -> List[Dict[str, Any]]:
        """Return every record whose ``field`` equals ``value``."""
        with self.lock:
            return [
                copy.deepcopy(record)
                for record in self._records[entity_type].values()
                if record.get(field) == value
            ]

    def patch(
        self, entity_type: EntityType, record_id: int, fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Merge ``fields`` into an existing record.

        Fields present in ``fields`` replace the stored values, absent fields
        are preserved, and ``id`` is never changed.

        Returns:
            Copy of the updated record, or None if the id is unknown
        """
        with self.lock:
            existing = self._records[entity_type].get(record_id)
            if existing is None:
                return None

            updated = {**existing, **copy.deepcopy(fields)}
            updated["id"] = existing["id"]
            self._records[entity_type][record_id] = updated
            return copy.deepcopy(updated)

    def remove(self, entity_type: EntityType, record_id: int) -> bool:
        """Delete a record; True if it was present."""
        with self.lock:
            return self._records[entity_type].pop(record_id, None) is not None

    def count(self, entity_type: EntityType) -> int:
        with self.lock:
            return len(self._records[entity_type])

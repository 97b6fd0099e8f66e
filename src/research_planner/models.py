"""
Pydantic models for Research Planner API request/response validation.

Request models validate payload shape before anything reaches the storage
layer; response models fix the camelCase wire format used by the web client.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


def _as_datetime(value: Any) -> Any:
    """Promote bare dates (e.g. from YAML) to midnight datetimes."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    return value


class CamelModel(BaseModel):
    """Base model accepting both camelCase (wire) and snake_case (Python) names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class PartialUpdate(CamelModel):
    """
    Base for update payloads where every field is optional.

    Fields listed in ``non_nullable_fields`` may be omitted but not
    explicitly set to null, since the stored record requires them.
    """

    non_nullable_fields: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        for name in self.non_nullable_fields:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        """Only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True)


class Attachment(CamelModel):
    """File reference stored on a task."""
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: str = Field(description="MIME type")
    url: str = Field(description="Locator of the attached file")


# Projects

class ProjectCreate(CamelModel):
    title: str = Field(min_length=1, max_length=500)
    goal: str
    user_id: Optional[int] = Field(None, gt=0, description="Owning user, defaults to 1")


class ProjectUpdate(PartialUpdate):
    non_nullable_fields: ClassVar[Tuple[str, ...]] = ("title", "goal", "user_id")

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    goal: Optional[str] = None
    user_id: Optional[int] = Field(None, gt=0)


class Project(CamelModel):
    id: int
    title: str
    goal: str
    user_id: int


# Milestones

class MilestoneCreate(CamelModel):
    title: str = Field(min_length=1, max_length=500)
    deadline: datetime
    project_id: int = Field(gt=0)

    coerce_deadline = field_validator("deadline", mode="before")(_as_datetime)


class MilestoneUpdate(PartialUpdate):
    non_nullable_fields: ClassVar[Tuple[str, ...]] = ("title", "deadline", "project_id")

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    deadline: Optional[datetime] = None
    project_id: Optional[int] = Field(None, gt=0)

    coerce_deadline = field_validator("deadline", mode="before")(_as_datetime)


class Milestone(CamelModel):
    id: int
    title: str
    deadline: datetime
    project_id: int


# Tasks

class TaskCreate(CamelModel):
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    status: TaskStatus = Field(TaskStatus.NOT_STARTED, validate_default=True)
    due_date: datetime
    notes: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    milestone_id: int = Field(gt=0)

    coerce_due_date = field_validator("due_date", mode="before")(_as_datetime)


class TaskUpdate(PartialUpdate):
    non_nullable_fields: ClassVar[Tuple[str, ...]] = (
        "title", "status", "due_date", "attachments", "milestone_id"
    )

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None
    notes: Optional[str] = None
    attachments: Optional[List[Attachment]] = None
    milestone_id: Optional[int] = Field(None, gt=0)

    coerce_due_date = field_validator("due_date", mode="before")(_as_datetime)


class Task(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    due_date: datetime
    notes: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    milestone_id: int


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str
    projects: int
    milestones: int
    tasks: int
    timestamp: str

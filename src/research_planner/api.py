"""
FastAPI Backend for the Research Planner

Thin REST adapter over PlannerStorage: validates payloads with pydantic,
maps repository results to status codes, and gates every /api route behind
an identifying request header.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .importer import import_plan_from_file
from .models import (
    HealthResponse,
    Milestone,
    MilestoneCreate,
    MilestoneUpdate,
    Project,
    ProjectCreate,
    ProjectUpdate,
    Task,
    TaskCreate,
    TaskUpdate,
)
from .storage import DEFAULT_USER_ID, MissingParentError, PlannerStorage
from .store import EntityType

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

AUTH_HEADER = os.getenv("PLANNER_AUTH_HEADER", "X-User-Id")
SEED_FILE = os.getenv("PLANNER_SEED_FILE")
DEFAULT_USERNAME = os.getenv("PLANNER_DEFAULT_USERNAME", "yamada")
DEFAULT_PASSWORD = os.getenv("PLANNER_DEFAULT_PASSWORD", "password")
STRICT_REFERENCES = os.getenv("PLANNER_STRICT_REFERENCES", "1").lower() not in ("0", "false", "no")

# Global storage instance shared by all requests; tests override get_storage
storage_instance: Optional[PlannerStorage] = None


def build_storage(seed_file: Optional[str] = None) -> PlannerStorage:
    """Create a PlannerStorage from environment settings, optionally seeded from YAML."""
    storage = PlannerStorage(
        strict_references=STRICT_REFERENCES,
        default_username=DEFAULT_USERNAME,
        default_password=DEFAULT_PASSWORD,
    )
    if seed_file:
        result = import_plan_from_file(storage, seed_file)
        for error in result["errors"]:
            logger.warning(f"Seed import: {error}")
    return storage


def get_storage() -> PlannerStorage:
    """
    FastAPI dependency to provide the storage instance.

    Raises:
        HTTPException: 503 if storage has not been initialized
    """
    if storage_instance is None:
        raise HTTPException(status_code=503, detail="Storage not available")
    return storage_instance


async def require_user(request: Request) -> str:
    """
    Access gate applied to every /api route.

    Rejects requests lacking the identifying header with 401 before any
    storage call is made.
    """
    user_id = request.headers.get(AUTH_HEADER)
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize storage on startup unless one was installed already (CLI, tests)."""
    global storage_instance

    if storage_instance is None:
        storage_instance = build_storage(SEED_FILE)
        logger.info("In-memory storage initialized" + (f" from {SEED_FILE}" if SEED_FILE else ""))

    logger.info("Research Planner API starting up...")
    logger.info(f"All /api routes require the '{AUTH_HEADER}' header")
    yield
    logger.info("Research Planner API shutting down")


app = FastAPI(
    title="Research Planner API",
    description="REST API for research projects, milestones and tasks",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

router = APIRouter(prefix="/api", dependencies=[Depends(require_user)])


def _not_found(entity_type: EntityType) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{entity_type.value.capitalize()} not found")


def _invalid(entity_type: EntityType, error: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"message": f"Invalid {entity_type.value} data", "errors": [str(error)]},
    )


@app.get("/healthz", response_model=HealthResponse)
async def health_check(storage: PlannerStorage = Depends(get_storage)):
    """Service health with current collection sizes."""
    return HealthResponse(
        status="healthy",
        projects=storage.store.count(EntityType.PROJECT),
        milestones=storage.store.count(EntityType.MILESTONE),
        tasks=storage.store.count(EntityType.TASK),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# Projects

@router.get("/projects", response_model=List[Project])
async def list_projects(storage: PlannerStorage = Depends(get_storage)):
    projects = storage.get_all_projects()
    logger.info(f"REST API: Retrieved {len(projects)} projects")
    return projects


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: int, storage: PlannerStorage = Depends(get_storage)):
    project = storage.get_project(project_id)
    if project is None:
        raise _not_found(EntityType.PROJECT)
    return project


@router.post("/projects", response_model=Project, status_code=201)
async def create_project(payload: ProjectCreate, storage: PlannerStorage = Depends(get_storage)):
    return storage.create_project(
        title=payload.title,
        goal=payload.goal,
        user_id=payload.user_id or DEFAULT_USER_ID,
    )


@router.put("/projects/{project_id}", response_model=Project)
@router.patch("/projects/{project_id}", response_model=Project)
async def update_project(
    project_id: int,
    payload: ProjectUpdate,
    storage: PlannerStorage = Depends(get_storage)
):
    project = storage.update_project(project_id, payload.changes())
    if project is None:
        raise _not_found(EntityType.PROJECT)
    return project


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(project_id: int, storage: PlannerStorage = Depends(get_storage)):
    """Delete a project with all of its milestones and tasks."""
    if not storage.delete_project(project_id):
        raise _not_found(EntityType.PROJECT)
    return Response(status_code=204)


# Milestones

@router.get("/milestones", response_model=List[Milestone])
async def list_milestones(
    project_id: Optional[int] = Query(None, alias="projectId"),
    storage: PlannerStorage = Depends(get_storage)
):
    if project_id is not None:
        milestones = storage.get_milestones_by_project_id(project_id)
    else:
        milestones = storage.get_all_milestones()

    filter_str = f" for project {project_id}" if project_id is not None else ""
    logger.info(f"REST API: Retrieved {len(milestones)} milestones{filter_str}")
    return milestones


@router.get("/milestones/{milestone_id}", response_model=Milestone)
async def get_milestone(milestone_id: int, storage: PlannerStorage = Depends(get_storage)):
    milestone = storage.get_milestone(milestone_id)
    if milestone is None:
        raise _not_found(EntityType.MILESTONE)
    return milestone


@router.post("/milestones", response_model=Milestone, status_code=201)
async def create_milestone(payload: MilestoneCreate, storage: PlannerStorage = Depends(get_storage)):
    try:
        return storage.create_milestone(**payload.model_dump())
    except MissingParentError as e:
        return _invalid(EntityType.MILESTONE, e)


@router.put("/milestones/{milestone_id}", response_model=Milestone)
@router.patch("/milestones/{milestone_id}", response_model=Milestone)
async def update_milestone(
    milestone_id: int,
    payload: MilestoneUpdate,
    storage: PlannerStorage = Depends(get_storage)
):
    milestone = storage.update_milestone(milestone_id, payload.changes())
    if milestone is None:
        raise _not_found(EntityType.MILESTONE)
    return milestone


@router.delete("/milestones/{milestone_id}", status_code=204)
async def delete_milestone(milestone_id: int, storage: PlannerStorage = Depends(get_storage)):
    """Delete a milestone with all of its tasks."""
    if not storage.delete_milestone(milestone_id):
        raise _not_found(EntityType.MILESTONE)
    return Response(status_code=204)


# Tasks

@router.get("/tasks", response_model=List[Task])
async def list_tasks(
    milestone_id: Optional[int] = Query(None, alias="milestoneId"),
    storage: PlannerStorage = Depends(get_storage)
):
    if milestone_id is not None:
        tasks = storage.get_tasks_by_milestone_id(milestone_id)
    else:
        tasks = storage.get_all_tasks()

    filter_str = f" for milestone {milestone_id}" if milestone_id is not None else ""
    logger.info(f"REST API: Retrieved {len(tasks)} tasks{filter_str}")
    return tasks


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(task_id: int, storage: PlannerStorage = Depends(get_storage)):
    task = storage.get_task(task_id)
    if task is None:
        raise _not_found(EntityType.TASK)
    return task


@router.post("/tasks", response_model=Task, status_code=201)
async def create_task(payload: TaskCreate, storage: PlannerStorage = Depends(get_storage)):
    try:
        return storage.create_task(**payload.model_dump())
    except MissingParentError as e:
        return _invalid(EntityType.TASK, e)


@router.put("/tasks/{task_id}", response_model=Task)
@router.patch("/tasks/{task_id}", response_model=Task)
async def update_task(
    task_id: int,
    payload: TaskUpdate,
    storage: PlannerStorage = Depends(get_storage)
):
    task = storage.update_task(task_id, payload.changes())
    if task is None:
        raise _not_found(EntityType.TASK)
    return task


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: int, storage: PlannerStorage = Depends(get_storage)):
    if not storage.delete_task(task_id):
        raise _not_found(EntityType.TASK)
    return Response(status_code=204)


app.include_router(router)


# Error handlers for consistent API responses

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render 401/404/503 with the same ``message`` key as validation errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed payloads, path ids and query parameters are client errors (400)."""
    logger.info(f"Rejected {request.method} {request.url.path}: {len(exc.errors())} validation errors")
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request data", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"message": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "research_planner.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
